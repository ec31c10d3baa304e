"""
Entry point for the video access server.
"""

import uvicorn

from vodguard.common.config import Config

from .core import VideoAccessServer


def start_server(config: Config | None = None) -> None:
    """Start the video access server."""
    if config is None:
        config = Config()
    server = VideoAccessServer(config=config)
    uvicorn.run(server.app, host=server.server_host, port=server.server_port)
