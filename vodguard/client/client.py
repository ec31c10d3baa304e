"""
HTTP client for the video access server.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from vodguard.common.config import Config
from vodguard.common.models import IssuedToken

logger = logging.getLogger(__name__)


class VideoAccessClientError(Exception):
    """Raised when the server rejects a request."""

    def __init__(self, status_code: int, code: str | None, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class VideoAccessClient:
    """Talks to the video access server on behalf of one user."""

    def __init__(
        self,
        user_id: str,
        server_url: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ):
        config = Config()
        self.server_url = (server_url or config.SERVER_URL).rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.token_header = config.TOKEN_HEADER
        self.user_id_header = config.USER_ID_HEADER
        self.http = session or requests.Session()
        self.token: str | None = None
        self.session_id: str | None = None

    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        all_headers = {self.user_id_header: self.user_id}
        all_headers.update(headers or {})
        r = self.http.request(
            method,
            f"{self.server_url}{path}",
            headers=all_headers,
            timeout=self.timeout,
            **kwargs,
        )
        if r.status_code >= 400:  # noqa: PLR2004
            raise self._error(r)
        return r.json()

    @staticmethod
    def _error(r: requests.Response) -> VideoAccessClientError:
        try:
            body = r.json()
        except ValueError:
            return VideoAccessClientError(r.status_code, None, r.text or r.reason)
        detail = body.get("detail", body) if isinstance(body, dict) else body
        if isinstance(detail, dict):
            return VideoAccessClientError(
                r.status_code, detail.get("code"), detail.get("message", "")
            )
        return VideoAccessClientError(r.status_code, None, str(detail))

    def _token_headers(self, token: str | None) -> dict[str, str]:
        token = token or self.token
        if token is None:
            msg = "No video token; call request_token first"
            raise VideoAccessClientError(0, "MISSING_VIDEO_TOKEN", msg)
        return {self.token_header: token}

    def request_token(self, video_id: str, batch_id: str) -> IssuedToken:
        """Ask the server for a playback token and remember it."""
        body = self._request(
            "POST", "/video/token", json={"videoId": video_id, "batchId": batch_id}
        )
        issued = IssuedToken.model_validate(body["data"])
        self.token = issued.token
        self.session_id = issued.session_id
        logger.info("Obtained video token for session %s", issued.session_id)
        return issued

    def stream(self, video_id: str, token: str | None = None) -> dict[str, Any]:
        body = self._request(
            "GET", f"/video/stream/{video_id}", headers=self._token_headers(token)
        )
        return body["data"]

    def metadata(self, video_id: str, token: str | None = None) -> dict[str, Any]:
        body = self._request(
            "GET", f"/video/metadata/{video_id}", headers=self._token_headers(token)
        )
        return body["data"]

    def terminate(self, session_id: str | None = None) -> None:
        """End a session; defaults to the one opened by the last request_token."""
        session_id = session_id or self.session_id
        if session_id is None:
            msg = "No session to terminate"
            raise VideoAccessClientError(0, "SESSION_NOT_FOUND", msg)
        self._request("POST", "/video/terminate", json={"sessionId": session_id})
        if session_id == self.session_id:
            self.token = None
            self.session_id = None
        logger.info("Terminated video session %s", session_id)

    def list_sessions(self) -> dict[str, Any]:
        body = self._request("GET", "/video/sessions")
        return body["data"]

    def close(self) -> None:
        self.http.close()
