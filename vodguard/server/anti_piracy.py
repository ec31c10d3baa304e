"""
Anti-piracy detection for content-serving routes.

Each rule is an independent strategy with its own enforcement policy. Every
detection is logged at high risk; only rules marked ``blocking`` reject the
request.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from vodguard.common.config import Config
from vodguard.common.exceptions import SuspiciousActivity
from vodguard.common.mixins import Configurable
from vodguard.common.models import DetectionResult, RequestContext
from vodguard.server.audit import AuditEvent, RiskLevel, safe_log_event

if TYPE_CHECKING:
    from collections.abc import Iterable

    from vodguard.common.interfaces import (
        IAuditSink,
        IDetectionRule,
        ISessionStore,
    )
    from vodguard.server.quota import RateLimiter

logger = logging.getLogger(__name__)


class RapidRequestRule:
    """More than ``threshold`` requests from one client within the window."""

    name = "RAPID_REQUESTS"
    blocking = False

    def __init__(self, rate_limiter: RateLimiter, threshold: int, window_ms: int):
        self.rate_limiter = rate_limiter
        self.threshold = threshold
        self.window_ms = window_ms

    async def detect(self, context: RequestContext) -> DetectionResult | None:
        key = f"rapid:{context.client_address}:{context.user_id or '-'}"
        count = await self.rate_limiter.hit(key, self.window_ms)
        if count <= self.threshold:
            return None
        return DetectionResult(
            rule=self.name,
            blocking=self.blocking,
            details={
                "count": count,
                "threshold": self.threshold,
                "window_ms": self.window_ms,
            },
        )


class SuspiciousUserAgentRule:
    """Declared client string contains an automation keyword."""

    name = "SUSPICIOUS_USER_AGENT"
    blocking = False

    def __init__(self, keywords: Iterable[str]):
        self.keywords = [k.lower() for k in keywords]

    async def detect(self, context: RequestContext) -> DetectionResult | None:
        user_agent = context.user_agent.lower()
        matched = [k for k in self.keywords if k in user_agent]
        if not matched:
            return None
        return DetectionResult(
            rule=self.name,
            blocking=self.blocking,
            details={"keywords": matched, "user_agent": context.user_agent},
        )


class MultipleSessionsRule:
    """At least ``threshold`` live sessions opened from one network address.

    Sessions past their expiry count as ended even before the sweep marks them.
    """

    name = "MULTIPLE_SESSIONS"
    blocking = True

    def __init__(
        self,
        session_store: ISessionStore,
        threshold: int,
        clock: Callable[[], float] = time.time,
    ):
        self.session_store = session_store
        self.threshold = threshold
        self.clock = clock

    async def detect(self, context: RequestContext) -> DetectionResult | None:
        now = self.clock()
        sessions = [
            s
            for s in await self.session_store.find_active_sessions_by_address(
                context.client_address
            )
            if s.is_live(now)
        ]
        if len(sessions) < self.threshold:
            return None
        return DetectionResult(
            rule=self.name,
            blocking=self.blocking,
            details={
                "active_sessions": len(sessions),
                "threshold": self.threshold,
                "users": sorted({s.user_id for s in sessions}),
            },
        )


class AntiPiracyDetector(Configurable):
    """Runs every rule against a request and applies each rule's policy."""

    rapid_request_threshold: int
    rapid_request_window_ms: int
    suspicious_user_agent_keywords: list[str]
    multiple_sessions_threshold: int

    def __init__(
        self,
        audit_sink: IAuditSink,
        rules: list[IDetectionRule] | None = None,
        *,
        session_store: ISessionStore | None = None,
        rate_limiter: RateLimiter | None = None,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
        **overrides: Any,
    ):
        self.config = config or Config()
        self.clock = clock
        self.apply_overrides(
            overrides,
            self.config,
            [
                "rapid_request_threshold",
                "rapid_request_window_ms",
                "suspicious_user_agent_keywords",
                "multiple_sessions_threshold",
            ],
        )
        self.audit_sink = audit_sink
        if rules is None:
            rules = self.default_rules(session_store, rate_limiter)
        self.rules = rules

    def default_rules(
        self,
        session_store: ISessionStore | None,
        rate_limiter: RateLimiter | None,
    ) -> list[IDetectionRule]:
        rules: list[IDetectionRule] = []
        if rate_limiter is not None:
            rules.append(
                RapidRequestRule(
                    rate_limiter,
                    self.rapid_request_threshold,
                    self.rapid_request_window_ms,
                )
            )
        rules.append(SuspiciousUserAgentRule(self.suspicious_user_agent_keywords))
        if session_store is not None:
            rules.append(
                MultipleSessionsRule(
                    session_store, self.multiple_sessions_threshold, self.clock
                )
            )
        return rules

    async def evaluate(self, context: RequestContext) -> list[DetectionResult]:
        """Return all detections; raise SuspiciousActivity for a blocking one."""
        detections: list[DetectionResult] = []
        for rule in self.rules:
            try:
                result = await rule.detect(context)
            except Exception:
                # A broken rule must not block playback
                logger.exception("Anti-piracy rule %s failed", rule.name)
                continue
            if result is None:
                continue

            detections.append(result)
            await safe_log_event(
                self.audit_sink,
                AuditEvent.SUSPICIOUS_ACTIVITY,
                context.audit_context(pattern=result.rule, details=result.details),
                RiskLevel.HIGH,
            )
            if result.blocking:
                logger.warning(
                    "Blocking request from %s: %s", context.client_address, result.rule
                )
                msg = "suspicious activity detected; access temporarily restricted"
                raise SuspiciousActivity(msg)
        return detections
