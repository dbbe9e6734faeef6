"""Formdesk: admin credential gate and Google OAuth token lifecycle for the form builder."""

from .app import create_app
from .config import AppConfig
from .errors import (
    AuthorizationDenied,
    ConfigurationError,
    FormdeskError,
    LinkageWriteFailure,
    OAuthExchangeFailure,
    ReauthRequired,
    ResourceNotFound,
)

__version__ = "0.1.0"

__all__ = [
    "create_app",
    "AppConfig",
    "AuthorizationDenied",
    "ConfigurationError",
    "FormdeskError",
    "LinkageWriteFailure",
    "OAuthExchangeFailure",
    "ReauthRequired",
    "ResourceNotFound",
]
