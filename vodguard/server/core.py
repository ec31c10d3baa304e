"""
Video access server using FastAPI.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Callable

from fastapi import FastAPI

from vodguard.common.config import Config, SigningKeys, load_signing_keys
from vodguard.common.exceptions import ConfigurationError
from vodguard.common.logging_utils import configure_logging
from vodguard.common.mixins import Configurable

from .audit import LoggingAuditSink
from .enrollment import StaticEnrollmentLookup
from .persistence import (
    MemoryCounterStore,
    MemorySessionStore,
    RedisCounterStore,
    RedisSessionStore,
    create_redis_client,
)
from .routes import VideoAccessRoutes
from .services import VideoAccessService
from .session_manager import SessionSweeper

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from vodguard.common.interfaces import (
        IAuditSink,
        ICounterStore,
        IEnrollmentLookup,
        ISessionStore,
    )


class VideoAccessServer(Configurable):
    """Main server class: builds the components once at startup."""

    log_level: int
    audit_log_level: int
    video_token_expiry: int
    max_concurrent_sessions: int
    max_daily_views: int
    max_token_requests_per_minute: int
    watermark_enabled: bool
    sweep_interval: int
    admin_token: str | None
    server_host: str
    server_port: int
    server_keys_dir: Path
    redis_url: str | None
    enrollments_file: Path | None

    def __init__(  # noqa: PLR0913
        self,
        config: Config | None = None,
        *,
        signing_keys: SigningKeys | None = None,
        session_store: ISessionStore | None = None,
        counter_store: ICounterStore | None = None,
        enrollment: IEnrollmentLookup | None = None,
        audit_sink: IAuditSink | None = None,
        clock: Callable[[], float] = time.time,
        **overrides: Any,
    ):
        self.config = config or Config()
        self.apply_overrides(
            overrides,
            self.config,
            [
                "log_level",
                "audit_log_level",
                "video_token_expiry",
                "max_concurrent_sessions",
                "max_daily_views",
                "max_token_requests_per_minute",
                "watermark_enabled",
                "sweep_interval",
                "admin_token",
                "server_host",
                "server_port",
                "server_keys_dir",
                "redis_url",
                "enrollments_file",
            ],
        )
        configure_logging(self.log_level, self.audit_log_level)
        self.logger = logging.getLogger(__name__)
        self.clock = clock

        # Fail fast on missing keys instead of on the first request
        if signing_keys is None:
            result = load_signing_keys(self.config, self.server_keys_dir)
            if not result.ok:
                raise ConfigurationError(result.error)
            signing_keys = result.keys
        assert signing_keys is not None
        self.signing_keys = signing_keys

        if session_store is None or counter_store is None:
            default_session_store, default_counter_store = self._default_stores()
            session_store = session_store or default_session_store
            counter_store = counter_store or default_counter_store
        self.session_store = session_store
        self.counter_store = counter_store
        if enrollment is None and self.enrollments_file:
            enrollment = StaticEnrollmentLookup.from_file(self.enrollments_file)
        elif enrollment is None:
            self.logger.warning(
                "No enrollments configured; every token request will be refused"
            )
            enrollment = StaticEnrollmentLookup()
        self.enrollment = enrollment
        self.audit_sink = audit_sink or LoggingAuditSink()

        self.service = VideoAccessService(
            config=self.config,
            signing_keys=self.signing_keys,
            session_store=self.session_store,
            counter_store=self.counter_store,
            enrollment=self.enrollment,
            audit_sink=self.audit_sink,
            video_token_expiry=self.video_token_expiry,
            max_concurrent_sessions=self.max_concurrent_sessions,
            max_daily_views=self.max_daily_views,
            max_token_requests_per_minute=self.max_token_requests_per_minute,
            watermark_enabled=self.watermark_enabled,
            logger=self.logger,
            clock=clock,
        )
        self.sweeper = SessionSweeper(self.service.lifecycle, self.sweep_interval)

        self.app = FastAPI(title="vodguard", lifespan=self._lifespan)
        self.routes = VideoAccessRoutes(self.service, self.config, self.admin_token)
        self.routes.setup_routes(self.app)

        self.logger.info(
            "Video access server configured for http://%s:%s",
            self.server_host,
            self.server_port,
        )

    def _default_stores(self) -> tuple[ISessionStore, ICounterStore]:
        if self.redis_url:
            client = create_redis_client(self.redis_url)
            return RedisSessionStore(client), RedisCounterStore(client)
        self.logger.warning(
            "No Redis URL configured; sessions are kept in process memory"
        )
        return MemorySessionStore(), MemoryCounterStore(clock=self.clock)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        self.sweeper.start()
        try:
            yield
        finally:
            await self.sweeper.stop()
