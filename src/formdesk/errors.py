"""Error taxonomy for the admin credential gate and Google OAuth lifecycle."""

from __future__ import annotations


class FormdeskError(Exception):
    """Base class for all formdesk errors."""


class ConfigurationError(FormdeskError):
    """Required secrets or OAuth client settings are missing or inconsistent.

    The message may name the missing setting; HTTP handlers never echo it to
    the caller.
    """


class AuthorizationDenied(FormdeskError):
    """Admin credential missing, incorrect, or presented on the wrong channel.

    Raised without any detail about which credential class was expected.
    """

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class OAuthExchangeFailure(FormdeskError):
    """The provider rejected (or never answered) a code or token exchange."""


class ReauthRequired(FormdeskError):
    """The stored grant can no longer be refreshed.

    The end user has to redo the Google OAuth flow; retrying will not help.
    """

    def __init__(self, message: str = "Google re-authentication required", email: str | None = None):
        super().__init__(message)
        self.email = email


class LinkageWriteFailure(FormdeskError):
    """Linking a resource to a grant failed after a successful token exchange."""

    def __init__(self, resource_id: str, grant_id: str | None, cause: Exception | None = None):
        super().__init__(f"Failed to link resource {resource_id} to grant {grant_id}: {cause}")
        self.resource_id = resource_id
        self.grant_id = grant_id
        self.cause = cause


class ResourceNotFound(FormdeskError):
    """The form a grant should be linked to does not exist.

    Linking never creates form records; forms are owned by form CRUD.
    """

    def __init__(self, resource_id: str):
        super().__init__(f"Form not found: {resource_id}")
        self.resource_id = resource_id
