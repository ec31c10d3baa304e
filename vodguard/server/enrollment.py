"""
Enrollment lookup.

Enrollment is owned by the course/payment side of the platform; this
subsystem only asks whether a user may watch a batch.
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from vodguard.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _pair(entry: Any) -> tuple[str, str]:
    if isinstance(entry, dict):
        user_id = entry.get("userId", entry.get("user_id"))
        batch_id = entry.get("batchId", entry.get("batch_id"))
    elif isinstance(entry, (list, tuple)) and len(entry) == 2:  # noqa: PLR2004
        user_id, batch_id = entry
    else:
        user_id = batch_id = None
    if not user_id or not batch_id:
        msg = f"Malformed enrollment entry: {entry!r}"
        raise ValueError(msg)
    return str(user_id), str(batch_id)


def _read_json(path: Path) -> list[tuple[str, str]]:
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        # {"user-1": ["batch-1", "batch-2"], ...}
        return [
            (str(user_id), str(batch_id))
            for user_id, batches in data.items()
            for batch_id in ([batches] if isinstance(batches, str) else batches)
        ]
    return [_pair(entry) for entry in data]


def _read_csv(path: Path) -> list[tuple[str, str]]:
    with path.open(newline="") as f:
        rows = [row for row in csv.reader(f) if row and any(cell.strip() for cell in row)]
    if rows and [cell.strip() for cell in rows[0]] == ["user_id", "batch_id"]:
        rows = rows[1:]
    return [_pair([cell.strip() for cell in row]) for row in rows]


class StaticEnrollmentLookup:
    """Enrollment facts held in memory as (user_id, batch_id) pairs."""

    def __init__(self, enrollments: Iterable[tuple[str, str]] = ()) -> None:
        self.enrollments: set[tuple[str, str]] = set(enrollments)

    @classmethod
    def from_file(cls, path: str | Path) -> StaticEnrollmentLookup:
        """Load pairs from a ``.json`` or ``.csv`` export.

        JSON may be a list of ``{"userId", "batchId"}`` objects, a list of
        ``[user_id, batch_id]`` pairs, or a mapping of user id to batch ids.
        CSV rows are ``user_id,batch_id`` with an optional header row.
        """
        path = Path(path)
        try:
            if path.suffix.lower() == ".csv":
                pairs = _read_csv(path)
            else:
                pairs = _read_json(path)
        except (OSError, ValueError, TypeError) as err:
            msg = f"Cannot load enrollments from {path}: {err}"
            raise ConfigurationError(msg) from err
        logger.info("Loaded %s enrollments from %s", len(pairs), path)
        return cls(pairs)

    def enroll(self, user_id: str, batch_id: str) -> None:
        self.enrollments.add((user_id, batch_id))

    def unenroll(self, user_id: str, batch_id: str) -> None:
        self.enrollments.discard((user_id, batch_id))

    async def is_enrolled(self, user_id: str, batch_id: str) -> bool:
        return (user_id, batch_id) in self.enrollments
