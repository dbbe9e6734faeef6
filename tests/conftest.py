"""Shared fixtures for formdesk tests."""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from formdesk.app import create_app
from formdesk.config import AppConfig
from formdesk.integrations.gsuite.auth.token_store import InMemoryTokenStore, OAuthGrant, utcnow
from formdesk.oauth.oauth_manager import GoogleIdentity, TokenBundle

API_KEY = "api-key-for-scripts"
UI_KEY = "ui-key-for-browsers"
REDIRECT_URI = "https://forms.example.com/api/auth/google/callback"


# ── Helpers ──────────────────────────────────────────────────────────


def make_mock_oauth_manager() -> MagicMock:
    """Create a GoogleOAuthManager stand-in whose provider calls succeed."""
    manager = MagicMock()
    manager.configured = True
    manager.create_authorization_url.return_value = (
        "https://accounts.google.com/o/oauth2/auth?client_id=client-id&state=test"
    )
    manager.exchange_code_for_tokens = AsyncMock(
        return_value=TokenBundle(
            access_token="at_new",
            refresh_token="rt_new",
            expiry_date=utcnow() + timedelta(hours=1),
        )
    )
    manager.fetch_user_info = AsyncMock(
        return_value=GoogleIdentity(email="owner@example.com", name="Form Owner", picture=None)
    )
    manager.is_live = AsyncMock(return_value=True)
    manager.refresh_access_token = AsyncMock(
        return_value=TokenBundle(
            access_token="at_refreshed",
            refresh_token=None,
            expiry_date=utcnow() + timedelta(hours=1),
        )
    )
    manager.revoke_token = AsyncMock(return_value=True)
    return manager


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        admin_api_key=API_KEY,
        admin_ui_key=UI_KEY,
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_uri=REDIRECT_URI,
        # TestClient talks plain http, so secure cookies would never be sent back
        admin_cookie_secure=False,
    )


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def oauth_manager() -> MagicMock:
    return make_mock_oauth_manager()


@pytest.fixture
def app(config, token_store, oauth_manager):
    return create_app(config, token_store=token_store, oauth_manager=oauth_manager)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def api_headers() -> dict:
    return {"x-admin-key": API_KEY}


@pytest.fixture
def make_grant() -> Callable[..., OAuthGrant]:
    """Factory for stored grants with sensible defaults."""

    def _make(
        email: str = "owner@example.com",
        grant_id: Optional[str] = None,
        access_token: str = "at_stored",
        refresh_token: Optional[str] = "rt_stored",
        expires_in: Optional[timedelta] = timedelta(hours=1),
        last_used_ago: Optional[timedelta] = None,
    ) -> OAuthGrant:
        now = utcnow()
        return OAuthGrant(
            id=grant_id or f"grant-{email.split('@')[0]}",
            email=email,
            access_token=access_token,
            refresh_token=refresh_token,
            expiry_date=now + expires_in if expires_in is not None else None,
            name=email.split("@")[0].title(),
            created_at=now - timedelta(days=1),
            updated_at=now - timedelta(days=1),
            last_used_at=now - last_used_ago if last_used_ago is not None else None,
        )

    return _make
