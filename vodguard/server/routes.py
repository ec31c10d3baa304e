"""
Routes for the video access server.
"""

from typing import Any

from fastapi import FastAPI, HTTPException, Request

from vodguard.common.config import Config
from vodguard.common.exceptions import (
    ValidationError,
    VideoAccessError,
)
from vodguard.common.models import (
    UNKNOWN,
    RequestContext,
    TerminateRequest,
    TokenRequest,
)

from .services import VideoAccessService


def build_request_context(request: Request, config: Config) -> RequestContext:
    """Collect the request attributes used for fingerprinting and auditing."""
    headers = dict(request.headers.items())
    return RequestContext(
        user_agent=headers.get("user-agent") or UNKNOWN,
        accept_language=headers.get("accept-language") or UNKNOWN,
        client_address=request.client.host if request.client else UNKNOWN,
        method=request.method,
        path=request.url.path,
        user_id=headers.get(config.USER_ID_HEADER),
        headers=headers,
        query_params=dict(request.query_params),
    )


def _envelope(data: Any, message: str) -> dict[str, Any]:
    return {"success": True, "data": data, "message": message}


def _http_error(err: VideoAccessError) -> HTTPException:
    return HTTPException(err.status_code, detail=err.to_dict())


class VideoAccessRoutes:
    """Handles FastAPI routes for the video access server."""

    def __init__(
        self, service: VideoAccessService, config: Config, admin_token: str | None
    ):
        self.service = service
        self.config = config
        self.admin_token = admin_token

    def setup_routes(self, app: FastAPI) -> None:
        """Setup API routes on the FastAPI app."""

        app.get("/health")(self.health)
        app.post("/video/token")(self.issue_token)
        app.get("/video/stream/{video_id}")(self.stream)
        app.get("/video/metadata/{video_id}")(self.metadata)
        app.post("/video/terminate")(self.terminate)
        app.get("/video/sessions")(self.sessions)
        if self.admin_token:
            app.post("/admin/sweep")(self.sweep)

    def _context(self, request: Request, *, require_user: bool) -> RequestContext:
        context = build_request_context(request, self.config)
        if require_user and not context.user_id:
            raise _http_error(
                ValidationError(
                    "authenticated user id is required",
                    status_code=401,
                    code="AUTHENTICATION_REQUIRED",
                )
            )
        return context

    async def health(self) -> dict[str, Any]:
        """Handle /health endpoint."""
        return self.service.health()

    async def issue_token(self, req: TokenRequest, request: Request) -> dict[str, Any]:
        """Handle /video/token endpoint."""
        context = self._context(request, require_user=True)
        assert context.user_id is not None
        try:
            issued = await self.service.issue(
                context, context.user_id, req.video_id, req.batch_id
            )
        except VideoAccessError as e:
            raise _http_error(e) from e
        return _envelope(
            issued.model_dump(by_alias=True),
            "Video access token generated successfully",
        )

    async def stream(self, video_id: str, request: Request) -> dict[str, Any]:
        """Handle /video/stream endpoint."""
        context = self._context(request, require_user=False)
        try:
            claims = await self.service.authorize_playback(context, video_id)
            await self.service.record_stream(context, claims)
        except VideoAccessError as e:
            raise _http_error(e) from e
        return _envelope(
            {
                "videoId": video_id,
                "batchId": claims.batch_id,
                "sessionId": claims.session_id,
                "watermark": claims.watermark.model_dump(by_alias=True),
            },
            "Video stream access granted",
        )

    async def metadata(self, video_id: str, request: Request) -> dict[str, Any]:
        """Handle /video/metadata endpoint."""
        context = self._context(request, require_user=False)
        try:
            claims = await self.service.authorize_playback(context, video_id)
        except VideoAccessError as e:
            raise _http_error(e) from e
        return _envelope(
            {
                "videoId": claims.video_id,
                "batchId": claims.batch_id,
                "sessionId": claims.session_id,
                "expiresAt": claims.exp,
            },
            "Video metadata retrieved successfully",
        )

    async def terminate(self, req: TerminateRequest, request: Request) -> dict[str, Any]:
        """Handle /video/terminate endpoint."""
        context = self._context(request, require_user=True)
        try:
            await self.service.terminate(context, req.session_id)
        except VideoAccessError as e:
            raise _http_error(e) from e
        return {"success": True, "message": "Video session terminated successfully"}

    async def sessions(self, request: Request) -> dict[str, Any]:
        """Handle /video/sessions endpoint."""
        context = self._context(request, require_user=True)
        assert context.user_id is not None
        try:
            data = await self.service.list_sessions(context.user_id)
        except VideoAccessError as e:
            raise _http_error(e) from e
        return _envelope(data, "Active video sessions retrieved successfully")

    async def sweep(self, request: Request) -> dict[str, Any]:
        """Handle /admin/sweep endpoint."""
        if request.headers.get(self.config.ADMIN_TOKEN_HEADER) != self.admin_token:
            raise HTTPException(
                403, detail={"code": "ACCESS_DENIED", "message": "Invalid admin token"}
            )
        affected = await self.service.sweep()
        return _envelope({"expired": affected}, "Expired sessions swept")
