"""Application factory.

Builds the FastAPI app, wires the admin gate and Google OAuth components onto
``app.state`` and maps the error taxonomy to HTTP responses.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .auth import admin_auth_router
from .auth.classifier import CredentialClassifier
from .auth.gate import AuthorizationGate
from .config import AppConfig
from .errors import (
    AuthorizationDenied,
    ConfigurationError,
    OAuthExchangeFailure,
    ReauthRequired,
    ResourceNotFound,
)
from .integrations.gsuite.auth.token_lifecycle import GrantResolver, TokenRefresher
from .integrations.gsuite.auth.token_store import FirestoreTokenStore, TokenStore
from .oauth import google_oauth_router
from .oauth.callback import OAuthCallbackHandler
from .oauth.oauth_manager import GoogleOAuthManager

logger = logging.getLogger(__name__)


def configure_logging(config: AppConfig) -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("formdesk").setLevel(config.log_level)


def configure_oauthlib() -> None:
    # Google may report previously granted scopes alongside the requested ones
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def register_exception_handlers(app: FastAPI) -> None:
    """Render formdesk errors without leaking configuration or provider detail."""

    @app.exception_handler(AuthorizationDenied)
    async def authorization_denied_handler(request: Request, exc: AuthorizationDenied):
        return JSONResponse({"ok": False, "error": "Unauthorized"}, status_code=401)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error on {request.method} {request.url.path}: {exc}")
        return JSONResponse({"ok": False, "error": "Service is not configured"}, status_code=500)

    @app.exception_handler(ReauthRequired)
    async def reauth_required_handler(request: Request, exc: ReauthRequired):
        logger.info(f"Google re-authentication required (account={exc.email})")
        return JSONResponse(
            {"ok": False, "error": str(exc), "needsReauth": True},
            status_code=401,
        )

    @app.exception_handler(ResourceNotFound)
    async def resource_not_found_handler(request: Request, exc: ResourceNotFound):
        logger.warning(f"Form not found on {request.url.path}: {exc.resource_id}")
        return JSONResponse({"ok": False, "error": "Form not found"}, status_code=404)

    @app.exception_handler(OAuthExchangeFailure)
    async def oauth_exchange_failure_handler(request: Request, exc: OAuthExchangeFailure):
        logger.error(f"Google OAuth exchange failed on {request.url.path}: {exc}")
        return JSONResponse({"ok": False, "error": "Google request failed"}, status_code=502)


def create_app(
    config: Optional[AppConfig] = None,
    *,
    token_store: Optional[TokenStore] = None,
    oauth_manager: Optional[GoogleOAuthManager] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Application configuration (read from the environment when omitted)
        token_store: Grant store (Firestore from configuration when omitted)
        oauth_manager: Google OAuth manager (built from configuration when omitted)

    Returns:
        Configured FastAPI app

    Raises:
        ConfigurationError: If the configuration can never work
    """
    config = (config or AppConfig.from_env()).validate_for_startup()
    configure_logging(config)
    configure_oauthlib()

    oauth_manager = oauth_manager or GoogleOAuthManager.from_config(config)
    token_store = token_store or FirestoreTokenStore.from_config(config)

    app = FastAPI(title="Formdesk admin and Google OAuth API")

    app.state.config = config
    app.state.authorization_gate = AuthorizationGate(CredentialClassifier.from_config(config))
    app.state.oauth_manager = oauth_manager
    app.state.token_store = token_store
    app.state.callback_handler = OAuthCallbackHandler(oauth_manager, token_store)
    app.state.token_refresher = TokenRefresher(oauth_manager, token_store)
    app.state.grant_resolver = GrantResolver(token_store)

    app.include_router(admin_auth_router)
    app.include_router(google_oauth_router)
    register_exception_handlers(app)

    logger.info(
        f"Formdesk app created (google_oauth={'on' if config.google_oauth_configured else 'off'}, "
        f"store={type(token_store).__name__})"
    )
    return app
