"""Google OAuth2 callback processing.

``OAuthCallbackHandler.handle_callback`` turns the provider's redirect into a
``FlowOutcome``. The outcome says what happened and which flow kind started
it; ``formdesk.oauth.rendering`` decides how to send it to the browser.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..errors import LinkageWriteFailure
from ..integrations.gsuite.auth.token_store import OAuthGrant, TokenStore, new_grant_id, utcnow
from .oauth_manager import GoogleIdentity, GoogleOAuthManager, TokenBundle
from .state import OAuthState, decode_state

logger = logging.getLogger(__name__)

MISSING_CODE = "missing_code"


class FlowOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)


class PopupSuccess(FlowOutcome):
    user: GoogleIdentity


class PopupError(FlowOutcome):
    error: str


class RedirectSuccess(FlowOutcome):
    user: GoogleIdentity


class RedirectError(FlowOutcome):
    # Value of the google_auth query flag: "error" or "missing_code"
    flag: str = "error"


CallbackOutcome = Union[PopupSuccess, PopupError, RedirectSuccess, RedirectError]


def error_outcome(state: OAuthState, error: str) -> CallbackOutcome:
    if state.is_popup:
        return PopupError(error=error)
    return RedirectError(flag=MISSING_CODE if error == MISSING_CODE else "error")


def success_outcome(state: OAuthState, user: GoogleIdentity) -> CallbackOutcome:
    if state.is_popup:
        return PopupSuccess(user=user)
    return RedirectSuccess(user=user)


def merge_grant(
    existing: Optional[OAuthGrant],
    tokens: TokenBundle,
    identity: GoogleIdentity,
    now: datetime,
) -> OAuthGrant:
    """Build the grant to store after a successful exchange.

    An existing grant keeps its id, creation time and, when Google did not
    send a new one, its refresh token.
    """
    if existing is None:
        return OAuthGrant(
            id=new_grant_id(),
            email=identity.email,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expiry_date=tokens.expiry_date,
            name=identity.name,
            picture_url=identity.picture,
            created_at=now,
            updated_at=now,
            last_used_at=now,
        )

    return existing.model_copy(
        update={
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token or existing.refresh_token,
            "expiry_date": tokens.expiry_date,
            "name": identity.name,
            "picture_url": identity.picture,
            "updated_at": now,
            "last_used_at": now,
        }
    )


class OAuthCallbackHandler:
    """Processes the redirect from Google after the user grants (or denies) access.

    The route must authorize the request before calling the handler; the
    handler itself performs no credential checks.
    """

    def __init__(
        self,
        oauth_manager: GoogleOAuthManager,
        token_store: TokenStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.oauth_manager = oauth_manager
        self.token_store = token_store
        self.clock = clock

    async def handle_callback(
        self,
        code: Optional[str],
        error: Optional[str],
        state_raw: Optional[str],
    ) -> CallbackOutcome:
        """Run the callback state machine.

        Never raises: every failure becomes an error outcome for the flow kind
        recorded in ``state_raw``. Nothing is retried.

        Args:
            code: Authorization code from Google
            error: Error reported by Google (e.g. ``access_denied``)
            state_raw: Raw ``state`` parameter

        Returns:
            One of PopupSuccess, PopupError, RedirectSuccess, RedirectError
        """
        state = decode_state(state_raw)

        if error:
            logger.error(f"OAuth authorization error from Google: {error}")
            return error_outcome(state, error)

        if not code:
            logger.warning("OAuth callback received without an authorization code")
            return error_outcome(state, MISSING_CODE)

        try:
            tokens = await self.oauth_manager.exchange_code_for_tokens(code)
            identity = await self.oauth_manager.fetch_user_info(tokens.access_token)
            grant = await asyncio.to_thread(self._store_grant, tokens, identity)
        except Exception as e:
            logger.error(f"Failed to process OAuth callback: {e}", exc_info=True)
            return error_outcome(state, "callback_failed")

        if state.target_resource_id:
            await self._link_resource(state.target_resource_id, grant.id)

        logger.info(f"Google account {identity.email} connected ({state.flow_kind.value} flow)")
        return success_outcome(state, identity)

    def _store_grant(self, tokens: TokenBundle, identity: GoogleIdentity) -> OAuthGrant:
        existing = self.token_store.get_by_email(identity.email)
        grant = merge_grant(existing, tokens, identity, self.clock())
        if existing is not None and not tokens.refresh_token:
            logger.info(f"Google omitted refresh token for {identity.email}; keeping stored one")
        return self.token_store.upsert(grant)

    async def _link_resource(self, resource_id: str, grant_id: str) -> None:
        # Authorization already succeeded; a failed link is logged, not returned
        try:
            await asyncio.to_thread(self.token_store.link_resource_to_grant, resource_id, grant_id)
        except Exception as e:
            failure = LinkageWriteFailure(resource_id, grant_id, e)
            logger.error(str(failure), exc_info=True)
