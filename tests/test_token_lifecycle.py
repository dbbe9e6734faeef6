"""Tests for token refresh and form-to-grant resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from formdesk.errors import OAuthExchangeFailure, ReauthRequired
from formdesk.integrations.gsuite.auth.token_lifecycle import (
    GrantResolver,
    TokenRefresher,
    delegated_credentials,
)
from formdesk.oauth.oauth_manager import TokenBundle

NOW = datetime.now(timezone.utc)


@pytest.fixture
def refresher(oauth_manager, token_store) -> TokenRefresher:
    return TokenRefresher(oauth_manager, token_store, clock=lambda: NOW)


@pytest.fixture
def resolver(token_store) -> GrantResolver:
    return GrantResolver(token_store)


class TestEnsureFresh:
    @pytest.mark.asyncio
    async def test_live_token_is_kept(self, refresher, oauth_manager, token_store, make_grant) -> None:
        grant = token_store.upsert(make_grant())

        fresh = await refresher.ensure_fresh(grant)

        assert fresh.access_token == grant.access_token
        assert fresh.last_used_at == NOW
        assert token_store.get_by_id(grant.id).last_used_at == NOW
        oauth_manager.refresh_access_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_live_token_does_not_overwrite_concurrent_reauth(
        self, refresher, token_store, make_grant
    ) -> None:
        grant = token_store.upsert(make_grant())
        token_store.upsert(grant.model_copy(update={"access_token": "at_reauth", "refresh_token": "rt_reauth"}))

        await refresher.ensure_fresh(grant)

        stored = token_store.get_by_id(grant.id)
        assert stored.access_token == "at_reauth"
        assert stored.refresh_token == "rt_reauth"
        assert stored.last_used_at == NOW

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, refresher, oauth_manager, token_store, make_grant) -> None:
        grant = token_store.upsert(make_grant(expires_in=timedelta(minutes=-5)))

        fresh = await refresher.ensure_fresh(grant)

        oauth_manager.is_live.assert_not_called()
        oauth_manager.refresh_access_token.assert_awaited_once_with("rt_stored")
        assert fresh.access_token == "at_refreshed"
        assert fresh.refresh_token == "rt_stored"
        assert fresh.updated_at == NOW
        assert token_store.get_by_id(grant.id).access_token == "at_refreshed"

    @pytest.mark.asyncio
    async def test_revoked_but_unexpired_token_is_refreshed(
        self, refresher, oauth_manager, token_store, make_grant
    ) -> None:
        oauth_manager.is_live = AsyncMock(return_value=False)
        grant = token_store.upsert(make_grant())

        fresh = await refresher.ensure_fresh(grant)

        assert fresh.access_token == "at_refreshed"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_stored(self, refresher, oauth_manager, token_store, make_grant) -> None:
        oauth_manager.refresh_access_token = AsyncMock(
            return_value=TokenBundle(access_token="at_rotated", refresh_token="rt_rotated")
        )
        grant = token_store.upsert(make_grant(expires_in=timedelta(minutes=-5)))

        fresh = await refresher.ensure_fresh(grant)

        assert fresh.refresh_token == "rt_rotated"

    @pytest.mark.asyncio
    async def test_no_refresh_token_requires_reauth(self, refresher, token_store, make_grant) -> None:
        grant = token_store.upsert(make_grant(refresh_token=None, expires_in=timedelta(minutes=-5)))

        with pytest.raises(ReauthRequired) as exc_info:
            await refresher.ensure_fresh(grant)
        assert exc_info.value.email == grant.email

    @pytest.mark.asyncio
    async def test_rejected_refresh_requires_reauth(self, refresher, oauth_manager, token_store, make_grant) -> None:
        oauth_manager.refresh_access_token = AsyncMock(side_effect=ReauthRequired())
        grant = token_store.upsert(make_grant(expires_in=timedelta(minutes=-5)))

        with pytest.raises(ReauthRequired) as exc_info:
            await refresher.ensure_fresh(grant)
        assert exc_info.value.email == grant.email
        assert token_store.get_by_id(grant.id) == grant

    @pytest.mark.asyncio
    async def test_transient_refresh_failure_propagates(
        self, refresher, oauth_manager, token_store, make_grant
    ) -> None:
        oauth_manager.refresh_access_token = AsyncMock(side_effect=OAuthExchangeFailure("timeout"))
        grant = token_store.upsert(make_grant(expires_in=timedelta(minutes=-5)))

        with pytest.raises(OAuthExchangeFailure):
            await refresher.ensure_fresh(grant)


class TestGrantResolver:
    def test_linked_grant(self, resolver, token_store, make_grant) -> None:
        grant = token_store.upsert(make_grant())
        token_store.link_resource_to_grant("R1", grant.id)
        assert resolver.resolve_for_resource("R1") == grant

    def test_falls_back_to_most_recently_used(self, resolver, token_store, make_grant) -> None:
        token_store.upsert(make_grant(email="old@example.com", last_used_ago=timedelta(days=2)))
        recent = token_store.upsert(make_grant(email="recent@example.com", last_used_ago=timedelta(hours=1)))

        grant = resolver.resolve_for_resource("R1")

        assert grant == recent
        assert token_store.linked_grant_id("R1") == recent.id

    def test_no_fallback_when_integration_disabled(self, resolver, token_store, make_grant) -> None:
        token_store.upsert(make_grant(last_used_ago=timedelta(hours=1)))
        assert resolver.resolve_for_resource("R1", integration_enabled=False) is None
        assert token_store.linked_grant_id("R1") is None

    def test_nothing_to_fall_back_to(self, resolver) -> None:
        assert resolver.resolve_for_resource("R1") is None

    def test_link_by_email(self, resolver, token_store, make_grant) -> None:
        grant = token_store.upsert(make_grant(email="second@example.com"))
        assert resolver.link_by_email("R1", "second@example.com") == grant
        assert token_store.linked_grant_id("R1") == grant.id

    def test_link_by_unknown_email(self, resolver, token_store) -> None:
        assert resolver.link_by_email("R1", "nobody@example.com") is None
        assert token_store.linked_grant_id("R1") is None


class TestDelegatedCredentials:
    @pytest.mark.asyncio
    async def test_no_grant(self, resolver, refresher) -> None:
        with pytest.raises(ReauthRequired):
            await delegated_credentials("R1", resolver, refresher)

    @pytest.mark.asyncio
    async def test_credentials_from_fresh_grant(
        self, resolver, refresher, oauth_manager, token_store, make_grant
    ) -> None:
        credentials = MagicMock()
        oauth_manager.credentials_for_grant.return_value = credentials
        token_store.upsert(make_grant(expires_in=timedelta(minutes=-5), last_used_ago=timedelta(hours=1)))

        result = await delegated_credentials("R1", resolver, refresher)

        assert result is credentials
        used_grant = oauth_manager.credentials_for_grant.call_args.args[0]
        assert used_grant.access_token == "at_refreshed"
