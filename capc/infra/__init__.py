"""Internal machinery: HTTP and retry."""

from .http import Auth, HttpClient, HttpError, OAuth2Auth
from .retry import on_status_code, retry, transient

__all__ = [
    "Auth",
    "HttpClient",
    "HttpError",
    "OAuth2Auth",
    "on_status_code",
    "retry",
    "transient",
]
