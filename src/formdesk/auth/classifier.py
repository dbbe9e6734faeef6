"""Admin secret classification with strict channel separation."""

from __future__ import annotations

import logging
import secrets
from enum import Enum
from typing import AbstractSet, Optional

from pydantic import BaseModel, ConfigDict

from ..config import AppConfig
from .credentials import Channel

logger = logging.getLogger(__name__)


class CredentialClass(str, Enum):
    API = "api"
    UI = "ui"


# Each channel admits exactly one class
CHANNEL_CLASSES: dict[Channel, frozenset[CredentialClass]] = {
    Channel.HEADER: frozenset({CredentialClass.API}),
    Channel.COOKIE: frozenset({CredentialClass.UI}),
    Channel.QUERY: frozenset({CredentialClass.API}),
}


class AuthVerdict(BaseModel):
    """Result of one authorization check.

    ``credential_class`` is only set when ``authorized`` is true.
    """

    model_config = ConfigDict(frozen=True)

    authorized: bool
    credential_class: Optional[CredentialClass] = None
    channel: Optional[Channel] = None

    @classmethod
    def denied(cls, channel: Optional[Channel] = None) -> "AuthVerdict":
        return cls(authorized=False, credential_class=None, channel=channel)


def _matches(candidate: bytes, expected: Optional[str]) -> bool:
    if not expected:
        return False
    return secrets.compare_digest(candidate, expected.encode("utf-8"))


class CredentialClassifier:
    """Decides whether a secret is a valid API or UI admin key for its channel."""

    def __init__(self, api_secret: Optional[str], ui_secret: Optional[str]):
        self._secrets = {
            CredentialClass.API: api_secret or None,
            CredentialClass.UI: ui_secret or None,
        }

    @classmethod
    def from_config(cls, config: AppConfig) -> "CredentialClassifier":
        return cls(api_secret=config.admin_api_key, ui_secret=config.admin_ui_key)

    def classify(
        self,
        secret: str,
        channel: Channel,
        allowed_classes: Optional[AbstractSet[CredentialClass]] = None,
    ) -> AuthVerdict:
        """Classify a secret presented on a channel.

        A secret that matches a class outside ``allowed_classes`` is denied;
        it is never re-checked against the other class.

        Args:
            secret: Candidate admin secret
            channel: Channel the secret arrived on
            allowed_classes: Classes acceptable to the caller; derived from the
                channel when omitted

        Returns:
            AuthVerdict for this request
        """
        if allowed_classes is None:
            allowed_classes = CHANNEL_CLASSES[channel]

        candidate = secret.encode("utf-8")
        # Compare against every configured secret so timing does not depend on which one matched
        matched = {cls for cls, expected in self._secrets.items() if _matches(candidate, expected)}

        permitted = matched & set(allowed_classes)
        if not permitted:
            if matched:
                logger.warning(f"Admin key presented on disallowed channel '{channel.value}'")
            return AuthVerdict.denied(channel)

        resolved = CredentialClass.API if CredentialClass.API in permitted else CredentialClass.UI
        return AuthVerdict(authorized=True, credential_class=resolved, channel=channel)
