"""OAuth2 calls to Google: authorization URL, code exchange, identity, liveness and refresh.

Provider calls are blocking (google-auth, requests); the async methods run
them in a worker thread under ``timeout`` seconds so a stuck provider cannot
hold an HTTP response open indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from pydantic import BaseModel, ConfigDict

from ..config import DEFAULT_PROVIDER_TIMEOUT_SECONDS, AppConfig
from ..errors import ConfigurationError, OAuthExchangeFailure, ReauthRequired
from ..integrations.gsuite.auth.scopes import SCOPES
from ..integrations.gsuite.auth.token_store import OAuthGrant
from .state import OAuthState, encode_state

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
TOKENINFO_URI = "https://oauth2.googleapis.com/tokeninfo"
REVOKE_URI = "https://oauth2.googleapis.com/revoke"

T = TypeVar("T")


class TokenBundle(BaseModel):
    """Tokens returned by a code or refresh exchange."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expiry_date: Optional[datetime] = None


class GoogleIdentity(BaseModel):
    """The delegated Google account."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


def _aware(expiry: Optional[datetime]) -> Optional[datetime]:
    # google-auth reports expiry as naive UTC
    if expiry is not None and expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry


class GoogleOAuthManager:
    """Manages the Google OAuth2 flow and token refresh for Sheets integrations."""

    SCOPES = SCOPES

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    ):
        """Initialize OAuth manager.

        Missing client settings are tolerated here and reported by each
        operation that needs them.

        Args:
            client_id: Google OAuth2 client ID
            client_secret: Google OAuth2 client secret
            redirect_uri: OAuth2 redirect URI (e.g., https://forms.example.com/api/auth/google/callback)
            timeout: Deadline in seconds for each provider call
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: AppConfig) -> "GoogleOAuthManager":
        return cls(
            client_id=config.google_client_id,
            client_secret=config.google_client_secret,
            redirect_uri=config.google_redirect_uri,
            timeout=config.provider_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def _require_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError(
                "Google OAuth not configured: GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET "
                "and GOOGLE_REDIRECT_URI are required"
            )

    def _client_config(self) -> dict[str, Any]:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def _create_flow(self) -> Flow:
        self._require_configured()
        # The callback builds a fresh Flow, so there is no stored PKCE verifier to pair with
        flow = Flow.from_client_config(
            client_config=self._client_config(),
            scopes=self.SCOPES,
            autogenerate_code_verifier=False,
        )
        flow.redirect_uri = self.redirect_uri
        return flow

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def create_authorization_url(self, state: OAuthState) -> str:
        """Create the Google authorization URL.

        Always asks for offline access with forced consent so Google issues a
        refresh token even for accounts that authorized before.

        Args:
            state: Flow kind and target form, encoded into ``state``

        Returns:
            Authorization URL

        Raises:
            ConfigurationError: If client settings are missing
        """
        flow = self._create_flow()
        authorization_url, _ = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent",
            state=encode_state(state),
        )
        return authorization_url

    def _exchange_code(self, code: str) -> TokenBundle:
        flow = self._create_flow()
        try:
            flow.fetch_token(code=code, timeout=self.timeout)
        except Exception as e:
            # Codes are single use; a replayed code lands here too
            logger.error(f"Failed to exchange authorization code: {e}")
            raise OAuthExchangeFailure("Failed to exchange authorization code for tokens") from e

        credentials = flow.credentials
        if not credentials.token:
            raise OAuthExchangeFailure("No access token received")

        return TokenBundle(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token or None,
            expiry_date=_aware(credentials.expiry),
        )

    async def exchange_code_for_tokens(self, code: str) -> TokenBundle:
        """Exchange an authorization code for tokens.

        Raises:
            ConfigurationError: If client settings are missing
            OAuthExchangeFailure: If Google rejects the code
            asyncio.TimeoutError: If Google does not answer in time
        """
        return await self._call(self._exchange_code, code)

    def _fetch_user_info(self, access_token: str) -> GoogleIdentity:
        service = build(
            "oauth2",
            "v2",
            credentials=Credentials(token=access_token),
            cache_discovery=False,
        )
        data = service.userinfo().get().execute()
        email = data.get("email")
        if not email:
            raise OAuthExchangeFailure("Google user info did not include an email")
        return GoogleIdentity(
            email=email,
            name=data.get("name") or None,
            picture=data.get("picture") or None,
        )

    async def fetch_user_info(self, access_token: str) -> GoogleIdentity:
        """Fetch the delegated identity for an access token."""
        return await self._call(self._fetch_user_info, access_token)

    # ------------------------------------------------------------------
    # Validation and refresh
    # ------------------------------------------------------------------

    def _token_is_live(self, access_token: str) -> bool:
        response = requests.get(
            TOKENINFO_URI,
            params={"access_token": access_token},
            timeout=self.timeout,
        )
        return response.status_code == 200

    async def is_live(self, access_token: Optional[str]) -> bool:
        """Check an access token with Google's tokeninfo endpoint.

        Fails closed: a network error, timeout or any non-200 answer counts
        as not live.
        """
        if not access_token:
            return False
        try:
            return await self._call(self._token_is_live, access_token)
        except Exception as e:
            logger.warning(f"Token liveness check failed, treating token as dead: {e}")
            return False

    def _refresh(self, refresh_token: str) -> TokenBundle:
        self._require_configured()
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.SCOPES,
        )
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            # google-auth marks 5xx and temporarily_unavailable answers as retryable
            if getattr(e, "retryable", False):
                logger.error(f"Google token endpoint unavailable while refreshing: {e}")
                raise OAuthExchangeFailure("Google token endpoint unavailable") from e
            logger.warning(f"Google rejected refresh token: {e}")
            raise ReauthRequired() from e
        except TransportError as e:
            logger.error(f"Transport error while refreshing access token: {e}")
            raise OAuthExchangeFailure("Failed to refresh access token") from e

        if not credentials.token:
            raise OAuthExchangeFailure("No access token received from refresh")

        return TokenBundle(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token or refresh_token,
            expiry_date=_aware(credentials.expiry),
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenBundle:
        """Exchange a refresh token for a new access token.

        Raises:
            ReauthRequired: If Google rejects the refresh token (revoked or expired grant)
            OAuthExchangeFailure: On transport failure, timeout or a retryable Google error
            ConfigurationError: If client settings are missing
        """
        try:
            return await self._call(self._refresh, refresh_token)
        except asyncio.TimeoutError as e:
            raise OAuthExchangeFailure("Timed out refreshing access token") from e

    def _revoke(self, token: str) -> bool:
        response = requests.post(
            REVOKE_URI,
            params={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.timeout,
        )
        return response.status_code == 200

    async def revoke_token(self, token: str) -> bool:
        """Best-effort revocation with Google; never raises."""
        try:
            revoked = await self._call(self._revoke, token)
        except Exception as e:
            logger.warning(f"Failed to revoke token with Google: {e}")
            return False
        if not revoked:
            logger.warning("Google did not confirm token revocation")
        return revoked

    # ------------------------------------------------------------------
    # Delegated API access
    # ------------------------------------------------------------------

    def credentials_for_grant(self, grant: OAuthGrant) -> Credentials:
        """Build google-auth Credentials from a stored grant."""
        expiry = grant.expiry_date
        if expiry is not None and expiry.tzinfo is not None:
            # google-auth compares expiry against naive UTC
            expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)
        return Credentials(
            token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.SCOPES,
            expiry=expiry,
        )

    def get_sheets_service(self, credentials: Credentials):
        """Build Google Sheets API service.

        Args:
            credentials: Google Credentials object

        Returns:
            Google Sheets API service
        """
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)
