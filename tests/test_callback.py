"""Tests for the OAuth callback state machine and outcome rendering."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from formdesk.errors import OAuthExchangeFailure
from formdesk.integrations.gsuite.auth.token_store import InMemoryTokenStore
from formdesk.oauth.callback import (
    OAuthCallbackHandler,
    PopupError,
    PopupSuccess,
    RedirectError,
    RedirectSuccess,
)
from formdesk.oauth.oauth_manager import GoogleIdentity, TokenBundle
from formdesk.oauth.rendering import builder_redirect_url, render_outcome, script_json
from formdesk.oauth.state import FlowKind, OAuthState, encode_state

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

POPUP_STATE = encode_state(OAuthState(flow_kind=FlowKind.POPUP, target_resource_id="contact-form"))
REDIRECT_STATE = encode_state(OAuthState(flow_kind=FlowKind.REDIRECT))


@pytest.fixture
def handler(oauth_manager, token_store) -> OAuthCallbackHandler:
    return OAuthCallbackHandler(oauth_manager, token_store, clock=lambda: NOW)


class TestProviderErrors:
    @pytest.mark.asyncio
    async def test_access_denied_popup(self, handler, oauth_manager) -> None:
        outcome = await handler.handle_callback(code=None, error="access_denied", state_raw=POPUP_STATE)
        assert outcome == PopupError(error="access_denied")
        oauth_manager.exchange_code_for_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_access_denied_redirect(self, handler) -> None:
        outcome = await handler.handle_callback(code=None, error="access_denied", state_raw=None)
        assert outcome == RedirectError(flag="error")

    @pytest.mark.asyncio
    async def test_missing_code(self, handler) -> None:
        popup = await handler.handle_callback(code=None, error=None, state_raw="popup")
        redirect = await handler.handle_callback(code=None, error=None, state_raw=REDIRECT_STATE)
        assert popup == PopupError(error="missing_code")
        assert redirect == RedirectError(flag="missing_code")


class TestSuccessfulCallback:
    @pytest.mark.asyncio
    async def test_creates_grant_and_links_form(self, handler, token_store) -> None:
        outcome = await handler.handle_callback(code="auth-code", error=None, state_raw=POPUP_STATE)

        assert isinstance(outcome, PopupSuccess)
        assert outcome.user.email == "owner@example.com"

        grant = token_store.get_by_email("owner@example.com")
        assert grant.access_token == "at_new"
        assert grant.refresh_token == "rt_new"
        assert grant.created_at == NOW
        assert grant.last_used_at == NOW
        assert token_store.get_by_resource("contact-form") == grant

    @pytest.mark.asyncio
    async def test_redirect_flow(self, handler, token_store) -> None:
        outcome = await handler.handle_callback(code="auth-code", error=None, state_raw=REDIRECT_STATE)
        assert isinstance(outcome, RedirectSuccess)
        assert token_store.linked_grant_id("contact-form") is None

    @pytest.mark.asyncio
    async def test_keeps_stored_refresh_token(self, handler, token_store, oauth_manager, make_grant) -> None:
        existing = token_store.upsert(make_grant(refresh_token="rt_original"))
        oauth_manager.exchange_code_for_tokens = AsyncMock(
            return_value=TokenBundle(access_token="at_second", refresh_token=None)
        )

        await handler.handle_callback(code="auth-code", error=None, state_raw=REDIRECT_STATE)

        grant = token_store.get_by_email("owner@example.com")
        assert grant.id == existing.id
        assert grant.created_at == existing.created_at
        assert grant.access_token == "at_second"
        assert grant.refresh_token == "rt_original"
        assert len(token_store.list_grants()) == 1

    @pytest.mark.asyncio
    async def test_new_refresh_token_replaces_stored(self, handler, token_store, make_grant) -> None:
        token_store.upsert(make_grant(refresh_token="rt_original"))
        await handler.handle_callback(code="auth-code", error=None, state_raw=REDIRECT_STATE)
        assert token_store.get_by_email("owner@example.com").refresh_token == "rt_new"

    @pytest.mark.asyncio
    async def test_link_failure_is_not_fatal(self, handler, token_store) -> None:
        with patch.object(token_store, "link_resource_to_grant", side_effect=RuntimeError("write failed")):
            outcome = await handler.handle_callback(code="auth-code", error=None, state_raw=POPUP_STATE)

        assert isinstance(outcome, PopupSuccess)
        assert token_store.get_by_email("owner@example.com") is not None
        assert token_store.linked_grant_id("contact-form") is None

    @pytest.mark.asyncio
    async def test_link_to_deleted_form_is_not_fatal(self, oauth_manager) -> None:
        token_store = InMemoryTokenStore(resources={"other-form"})
        handler = OAuthCallbackHandler(oauth_manager, token_store, clock=lambda: NOW)

        outcome = await handler.handle_callback(code="auth-code", error=None, state_raw=POPUP_STATE)

        assert isinstance(outcome, PopupSuccess)
        assert token_store.get_by_email("owner@example.com") is not None
        assert token_store.linked_grant_id("contact-form") is None


class TestFailedExchange:
    @pytest.mark.asyncio
    async def test_same_code_twice(self, handler, token_store, oauth_manager) -> None:
        oauth_manager.exchange_code_for_tokens = AsyncMock(
            side_effect=[
                TokenBundle(access_token="at_new", refresh_token="rt_new"),
                OAuthExchangeFailure("Failed to exchange authorization code for tokens"),
            ]
        )

        first = await handler.handle_callback(code="auth-code", error=None, state_raw=POPUP_STATE)
        second = await handler.handle_callback(code="auth-code", error=None, state_raw=POPUP_STATE)

        assert isinstance(first, PopupSuccess)
        assert isinstance(second, PopupError)
        assert token_store.get_by_email("owner@example.com").refresh_token == "rt_new"

    @pytest.mark.asyncio
    async def test_replayed_code(self, handler, token_store, oauth_manager) -> None:
        oauth_manager.exchange_code_for_tokens = AsyncMock(
            side_effect=OAuthExchangeFailure("Failed to exchange authorization code for tokens")
        )
        outcome = await handler.handle_callback(code="used-code", error=None, state_raw=POPUP_STATE)

        assert isinstance(outcome, PopupError)
        assert token_store.list_grants() == []
        assert token_store.linked_grant_id("contact-form") is None

    @pytest.mark.asyncio
    async def test_provider_timeout(self, handler, token_store, oauth_manager) -> None:
        oauth_manager.fetch_user_info = AsyncMock(side_effect=asyncio.TimeoutError())
        outcome = await handler.handle_callback(code="auth-code", error=None, state_raw=REDIRECT_STATE)

        assert outcome == RedirectError(flag="error")
        assert token_store.list_grants() == []

    @pytest.mark.asyncio
    async def test_store_failure(self, handler, token_store) -> None:
        with patch.object(token_store, "upsert", side_effect=RuntimeError("firestore unavailable")):
            outcome = await handler.handle_callback(code="auth-code", error=None, state_raw=POPUP_STATE)
        assert isinstance(outcome, PopupError)


class TestRenderOutcome:
    def test_popup_success_posts_user(self) -> None:
        outcome = PopupSuccess(user=GoogleIdentity(email="owner@example.com", name="Owner"))
        resp = render_outcome(outcome)
        body = resp.body.decode()

        assert resp.media_type == "text/html"
        assert "GOOGLE_AUTH_SUCCESS" in body
        assert '"email": "owner@example.com"' in body
        assert "window.close()" in body

    def test_popup_error(self) -> None:
        body = render_outcome(PopupError(error="access_denied")).body.decode()
        assert "GOOGLE_AUTH_ERROR" in body
        assert '"access_denied"' in body

    def test_redirects(self) -> None:
        success = render_outcome(RedirectSuccess(user=GoogleIdentity(email="a@example.com")))
        missing = render_outcome(RedirectError(flag="missing_code"), base_url="https://forms.example.com")

        assert success.status_code == 302
        assert success.headers["location"] == "/builder?google_auth=success"
        assert missing.headers["location"] == "https://forms.example.com/builder?google_auth=missing_code"

    def test_script_json_cannot_close_the_script(self) -> None:
        encoded = script_json({"name": "</script><script>alert(1)</script>"})
        assert "</script>" not in encoded
        assert "<" not in encoded

    def test_builder_redirect_url_strips_trailing_slash(self) -> None:
        assert builder_redirect_url("error", "https://forms.example.com/") == (
            "https://forms.example.com/builder?google_auth=error"
        )
