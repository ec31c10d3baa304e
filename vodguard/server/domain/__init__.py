"""Request handlers for the video access server."""
