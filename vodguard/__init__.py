# vodguard protected video access

from vodguard.client.client import VideoAccessClient, VideoAccessClientError
from vodguard.server.core import VideoAccessServer

__all__ = [
    "VideoAccessClient",
    "VideoAccessClientError",
    "VideoAccessServer",
]
