"""
Audit and security-event logging.
"""

from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from vodguard.common.logging_utils import AUDIT_LOGGER

if TYPE_CHECKING:
    from vodguard.common.interfaces import IAuditSink

logger = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    VIDEO_ACCESS = "VIDEO_ACCESS"
    VIDEO_VIEW = "VIDEO_VIEW"
    VIDEO_SESSION_END = "VIDEO_SESSION_END"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


ELEVATED_RISK = frozenset({RiskLevel.HIGH.value, RiskLevel.CRITICAL.value})

_LOG_LEVELS = {
    RiskLevel.LOW.value: logging.INFO,
    RiskLevel.MEDIUM.value: logging.WARNING,
    RiskLevel.HIGH.value: logging.ERROR,
    RiskLevel.CRITICAL.value: logging.ERROR,
}


def _value(item: str | Enum) -> str:
    return item.value if isinstance(item, Enum) else item


class LoggingAuditSink:
    """Writes audit events to the ``vodguard.audit`` logger."""

    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self.logger = audit_logger or logging.getLogger(AUDIT_LOGGER)

    async def log_event(
        self, event_type: str, context: dict[str, Any], risk_level: str
    ) -> None:
        self.logger.log(
            _LOG_LEVELS.get(risk_level, logging.INFO),
            "%s [%s] %s",
            event_type,
            risk_level,
            context,
        )


class MemoryAuditSink:
    """Keeps audit entries in memory; elevated-risk entries also become alerts."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []
        self.security_alerts: list[dict[str, Any]] = []

    async def log_event(
        self, event_type: str, context: dict[str, Any], risk_level: str
    ) -> None:
        entry = {
            "id": str(uuid.uuid4()),
            "event_type": event_type,
            "risk_level": risk_level,
            "context": dict(context),
            "timestamp": int(time.time()),
        }
        self.entries.append(entry)
        if risk_level in ELEVATED_RISK:
            self.security_alerts.append(
                {**entry, "alert_type": "HIGH_RISK_ACTIVITY", "reviewed": False}
            )

    def events(self, event_type: str | Enum | None = None) -> list[dict[str, Any]]:
        if event_type is None:
            return list(self.entries)
        wanted = _value(event_type)
        return [e for e in self.entries if e["event_type"] == wanted]


async def safe_log_event(
    sink: IAuditSink,
    event_type: str | Enum,
    context: dict[str, Any],
    risk_level: str | Enum,
) -> None:
    """Log to the audit sink; a broken sink never fails the request."""
    try:
        await sink.log_event(_value(event_type), context, _value(risk_level))
    except Exception:
        logger.exception("Failed to write audit event %s", _value(event_type))
