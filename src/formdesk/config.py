"""Process configuration.

Settings are read from the environment exactly once, at application start,
into an immutable ``AppConfig`` that is passed to the components that need it.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 10.0

_TRUTHY = {"1", "true", "yes", "on"}


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


class AppConfig(BaseModel):
    """Immutable configuration for the admin gate and Google OAuth flow."""

    model_config = ConfigDict(frozen=True)

    admin_api_key: Optional[str] = None
    admin_ui_key: Optional[str] = None

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None

    # Prefix for builder redirects; empty keeps them host-relative
    app_base_url: str = ""

    firestore_project: Optional[str] = None
    firestore_database: str = "(default)"

    provider_timeout_seconds: float = Field(default=DEFAULT_PROVIDER_TIMEOUT_SECONDS, gt=0)
    admin_cookie_secure: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Frozen AppConfig

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        env = os.environ if environ is None else environ

        timeout_raw = _optional(env, "PROVIDER_TIMEOUT_SECONDS")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_PROVIDER_TIMEOUT_SECONDS
        except ValueError as e:
            raise ConfigurationError(f"PROVIDER_TIMEOUT_SECONDS is not a number: {timeout_raw}") from e

        secure_raw = _optional(env, "ADMIN_COOKIE_SECURE")
        cookie_secure = secure_raw.lower() in _TRUTHY if secure_raw else True

        return cls(
            admin_api_key=_optional(env, "ADMIN_API_KEY"),
            admin_ui_key=_optional(env, "ADMIN_UI_KEY"),
            google_client_id=_optional(env, "GOOGLE_CLIENT_ID"),
            google_client_secret=_optional(env, "GOOGLE_CLIENT_SECRET"),
            google_redirect_uri=_optional(env, "GOOGLE_REDIRECT_URI"),
            app_base_url=(_optional(env, "APP_BASE_URL") or "").rstrip("/"),
            firestore_project=_optional(env, "FIRESTORE_PROJECT"),
            firestore_database=_optional(env, "FIRESTORE_DATABASE") or "(default)",
            provider_timeout_seconds=timeout,
            admin_cookie_secure=cookie_secure,
            log_level=(_optional(env, "LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_redirect_uri)

    def validate_for_startup(self) -> "AppConfig":
        """Fail fast on configurations that can never work.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If no admin secret is set, both admin secrets
                are identical, or the Google client settings are partial
        """
        if not self.admin_api_key and not self.admin_ui_key:
            raise ConfigurationError("Neither ADMIN_API_KEY nor ADMIN_UI_KEY is set")

        if self.admin_api_key and self.admin_api_key == self.admin_ui_key:
            raise ConfigurationError("ADMIN_API_KEY and ADMIN_UI_KEY must be different")

        google_values = {
            "GOOGLE_CLIENT_ID": self.google_client_id,
            "GOOGLE_CLIENT_SECRET": self.google_client_secret,
            "GOOGLE_REDIRECT_URI": self.google_redirect_uri,
        }
        missing = [name for name, value in google_values.items() if not value]
        if missing and len(missing) < len(google_values):
            raise ConfigurationError(
                f"Google OAuth is partially configured, missing: {', '.join(missing)}"
            )
        if missing:
            logger.warning("Google OAuth is not configured; Google Sheets integration is disabled")

        if self.google_redirect_uri and not self.google_redirect_uri.startswith(("http://", "https://")):
            raise ConfigurationError("GOOGLE_REDIRECT_URI must be an absolute http(s) URL")

        if not self.admin_api_key:
            logger.warning("ADMIN_API_KEY is not set; programmatic API access is disabled")
        if not self.admin_ui_key:
            logger.warning("ADMIN_UI_KEY is not set; browser admin login is disabled")

        return self
