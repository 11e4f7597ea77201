from stackdeploy.clients.base import BaseHTTPClient, PermanentHTTPError, RetryableHTTPError

__all__ = ["BaseHTTPClient", "PermanentHTTPError", "RetryableHTTPError"]
