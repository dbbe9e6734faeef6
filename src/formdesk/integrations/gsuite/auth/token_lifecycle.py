"""
Keeping delegated Google access usable across token expiry.

Before any delegated call the grant linked to a form is checked: an expired
or dead access token is refreshed and the new token written back to the
store. A grant that can no longer be refreshed surfaces as ``ReauthRequired``
so the UI can ask the user to reconnect Google.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from google.oauth2.credentials import Credentials

from ....errors import ReauthRequired
from .token_store import OAuthGrant, TokenStore, utcnow

if TYPE_CHECKING:
    from ....oauth.oauth_manager import GoogleOAuthManager

logger = logging.getLogger(__name__)


class TokenRefresher:
    """Validates a grant's access token and refreshes it when needed."""

    def __init__(
        self,
        oauth_manager: "GoogleOAuthManager",
        token_store: TokenStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.oauth_manager = oauth_manager
        self.token_store = token_store
        self.clock = clock

    async def ensure_fresh(self, grant: OAuthGrant) -> OAuthGrant:
        """
        Return a grant whose access token Google currently accepts.

        The expiry timestamp is checked first; a token that has not expired is
        still confirmed with the provider, since Google can revoke it early.

        Args:
            grant: Stored grant

        Returns:
            The grant with ``last_used_at`` bumped, refreshed if needed

        Raises:
            ReauthRequired: If the token is dead and cannot be refreshed
            OAuthExchangeFailure: If the refresh call itself failed transiently
        """
        now = self.clock()

        if not grant.is_expired(now) and await self.oauth_manager.is_live(grant.access_token):
            await asyncio.to_thread(self.token_store.touch, grant.id, now)
            return grant.model_copy(update={"last_used_at": now})

        if not grant.refresh_token:
            logger.warning(f"Access token for {grant.email} is dead and no refresh token is stored")
            raise ReauthRequired(email=grant.email)

        logger.info(f"Refreshing Google access token for {grant.email}")
        try:
            tokens = await self.oauth_manager.refresh_access_token(grant.refresh_token)
        except ReauthRequired as e:
            e.email = grant.email
            raise

        refreshed = grant.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or grant.refresh_token,
                "expiry_date": tokens.expiry_date,
                "updated_at": now,
                "last_used_at": now,
            }
        )
        stored = await asyncio.to_thread(self.token_store.upsert, refreshed)
        logger.info(f"Refreshed Google access token for {grant.email}")
        return stored


class GrantResolver:
    """Finds the grant a form should use."""

    def __init__(self, token_store: TokenStore):
        self.token_store = token_store

    def resolve_for_resource(self, resource_id: str, integration_enabled: bool = True) -> Optional[OAuthGrant]:
        """
        Return the grant linked to a form.

        When nothing is linked and the integration is enabled, the most
        recently used grant is linked to the form and returned, so enabling
        Sheets on a new form does not force another Google sign-in. That grant
        may belong to a different administrator's Google account.

        Args:
            resource_id: Form refKey
            integration_enabled: Whether the form's Google integration is on

        Returns:
            The grant, or None if there is nothing to use
        """
        grant = self.token_store.get_by_resource(resource_id)
        if grant is not None or not integration_enabled:
            return grant

        fallback = self.token_store.get_most_recently_used()
        if fallback is None:
            logger.info(f"No Google grant available to link to form {resource_id}")
            return None

        self.token_store.link_resource_to_grant(resource_id, fallback.id)
        logger.info(
            f"Linked most recently used Google grant {fallback.id} ({fallback.email}) "
            f"to form {resource_id}"
        )
        return fallback

    def link_by_email(self, resource_id: str, email: str) -> Optional[OAuthGrant]:
        """Explicitly link a form to the grant for ``email``."""
        grant = self.token_store.get_by_email(email)
        if grant is None:
            return None
        self.token_store.link_resource_to_grant(resource_id, grant.id)
        return grant


async def delegated_credentials(
    resource_id: str,
    resolver: GrantResolver,
    refresher: TokenRefresher,
) -> Credentials:
    """
    Fresh Google credentials for a form's delegated calls.

    Raises:
        ReauthRequired: If the form has no usable grant
    """
    grant = await asyncio.to_thread(resolver.resolve_for_resource, resource_id, True)
    if grant is None:
        raise ReauthRequired("No Google account connected")

    grant = await refresher.ensure_fresh(grant)
    return refresher.oauth_manager.credentials_for_grant(grant)
