"""
Keyword overrides on top of ``Config`` defaults.
"""

from __future__ import annotations

from typing import Any


class Configurable:
    """Mixin for components whose limits can be overridden per instance.

    Each name in the attribute list maps to the UPPER_CASE attribute of the
    config object; a keyword override with the same name wins over it.
    """

    def apply_overrides(
        self,
        overrides: dict[str, Any],
        config_obj: Any,
        attr_list: list[str] | None = None,
    ) -> None:
        """Set ``self.<name>`` for each name in ``attr_list``.

        Raises:
            TypeError: an override names something outside ``attr_list``
        """
        names = attr_list or []

        unknown = sorted(set(overrides) - set(names))
        if unknown:
            msg = f"Unknown configuration overrides: {', '.join(unknown)}"
            raise TypeError(msg)

        for name in names:
            if name in overrides:
                setattr(self, name, overrides[name])
            elif hasattr(config_obj, name.upper()):
                setattr(self, name, getattr(config_obj, name.upper()))
