"""Google OAuth2 package for form integrations.

This package provides:
- Authorization URL construction with popup/redirect state
- Callback handling that stores one grant per Google account
- Popup (postMessage) and redirect rendering of callback outcomes
- Token liveness checks, refresh and revocation
"""

from .callback import (
    FlowOutcome,
    OAuthCallbackHandler,
    PopupError,
    PopupSuccess,
    RedirectError,
    RedirectSuccess,
)
from .google_routes import router as google_oauth_router
from .oauth_manager import GoogleIdentity, GoogleOAuthManager, TokenBundle
from .rendering import render_outcome
from .state import FlowKind, OAuthState, decode_state, encode_state

__all__ = [
    "google_oauth_router",
    "FlowOutcome",
    "OAuthCallbackHandler",
    "PopupError",
    "PopupSuccess",
    "RedirectError",
    "RedirectSuccess",
    "GoogleIdentity",
    "GoogleOAuthManager",
    "TokenBundle",
    "render_outcome",
    "FlowKind",
    "OAuthState",
    "decode_state",
    "encode_state",
]
