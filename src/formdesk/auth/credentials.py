"""Admin credential extraction.

The HTTP boundary turns each inbound request into a ``RequestCredentials``
value once; everything past that point works on the value only.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from starlette.requests import HTTPConnection

ADMIN_HEADER = "x-admin-key"
ADMIN_COOKIE = "admin_key"
ADMIN_QUERY_PARAM = "adminKey"


class Channel(str, Enum):
    """Transport a credential arrived on."""

    HEADER = "header"
    COOKIE = "cookie"
    QUERY = "query"


class Credential(BaseModel):
    """A candidate admin secret and the channel that supplied it."""

    model_config = ConfigDict(frozen=True)

    secret: str
    channel: Channel


class RequestCredentials(BaseModel):
    """The three places an admin secret may appear on a request."""

    model_config = ConfigDict(frozen=True)

    header: Optional[str] = None
    cookie: Optional[str] = None
    query: Optional[str] = None

    @classmethod
    def from_request(cls, request: HTTPConnection) -> "RequestCredentials":
        """Adapt a Starlette/FastAPI request."""
        return cls(
            header=request.headers.get(ADMIN_HEADER),
            cookie=request.cookies.get(ADMIN_COOKIE),
            query=request.query_params.get(ADMIN_QUERY_PARAM),
        )


def extract_credential(credentials: RequestCredentials) -> Optional[Credential]:
    """Return the first non-empty secret in priority order header, cookie, query.

    Args:
        credentials: Per-request credential sources

    Returns:
        Credential with its channel, or None when no source carries a secret
    """
    ordered = (
        (credentials.header, Channel.HEADER),
        (credentials.cookie, Channel.COOKIE),
        (credentials.query, Channel.QUERY),
    )
    for secret, channel in ordered:
        if secret:
            return Credential(secret=secret, channel=channel)
    return None
