"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from vodguard.common.models import (
        DetectionResult,
        RequestContext,
        SessionFilter,
        VideoSession,
        ViewRecord,
    )


class ISessionStore(Protocol):
    """Shared keyed storage for sessions and view records."""

    async def create_session(self, session: VideoSession) -> None: ...

    async def get_session(self, session_id: str) -> VideoSession | None: ...

    async def find_sessions(
        self, user_id: str, active_only: bool = True  # noqa: FBT001, FBT002
    ) -> list[VideoSession]: ...

    async def find_active_sessions_by_address(
        self, client_address: str
    ) -> list[VideoSession]: ...

    async def update_session(self, session_id: str, changes: dict[str, Any]) -> bool:
        """Apply ``changes`` to an active session.

        Ended sessions are final: the update is refused and False returned when
        the session is unknown or no longer active.
        """
        ...

    async def batch_update_sessions(
        self, session_filter: SessionFilter, changes: dict[str, Any]
    ) -> int:
        """Apply ``changes`` to every active session matching the filter."""
        ...

    async def append_view(self, record: ViewRecord) -> None: ...

    async def count_views(self, user_id: str, since: int, until: int) -> int: ...


class ICounterStore(Protocol):
    """Shared counters with atomic increment-with-TTL semantics."""

    async def increment(self, key: str, window_ms: int) -> int: ...


class IEnrollmentLookup(Protocol):
    async def is_enrolled(self, user_id: str, batch_id: str) -> bool: ...


class IAuditSink(Protocol):
    async def log_event(
        self, event_type: str, context: dict[str, Any], risk_level: str
    ) -> None: ...


class IDetectionRule(Protocol):
    """Pluggable anti-piracy strategy."""

    name: str
    blocking: bool

    async def detect(self, context: RequestContext) -> DetectionResult | None: ...
