"""Two-tier admin credential gate.

This package provides:
- Credential extraction from header, cookie and query parameter
- UI/API key classification with strict channel separation
- The FastAPI authorization dependency used by protected routes
- Admin login/logout routes for the browser UI
"""

from .admin_routes import router as admin_auth_router
from .classifier import AuthVerdict, CredentialClass, CredentialClassifier
from .credentials import Channel, Credential, RequestCredentials, extract_credential
from .gate import AuthMode, AuthorizationGate, get_authorization_gate, require_admin

__all__ = [
    "admin_auth_router",
    "AuthVerdict",
    "CredentialClass",
    "CredentialClassifier",
    "Channel",
    "Credential",
    "RequestCredentials",
    "extract_credential",
    "AuthMode",
    "AuthorizationGate",
    "get_authorization_gate",
    "require_admin",
]
