from vodguard.client.client import VideoAccessClient, VideoAccessClientError

__all__ = ["VideoAccessClient", "VideoAccessClientError"]
