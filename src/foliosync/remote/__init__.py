"""Remote domain — portfolio repository client."""

from foliosync.remote.client import error_from_response
from foliosync.remote.client import RemotePortfolioClient

__all__ = [
    "error_from_response",
    "RemotePortfolioClient",
]
