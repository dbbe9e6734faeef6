"""Authorization gate used by every protected route.

Routes declare the credential class they accept:

    @router.get("/forms", dependencies=[Depends(require_admin(AuthMode.UI))])

``require_admin`` raises ``AuthorizationDenied``; the application maps it to a
uniform 401 that does not reveal which class was expected.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from fastapi import Request

from ..errors import AuthorizationDenied
from .classifier import CHANNEL_CLASSES, AuthVerdict, CredentialClass, CredentialClassifier
from .credentials import RequestCredentials, extract_credential

logger = logging.getLogger(__name__)


class AuthMode(str, Enum):
    API = "api"
    UI = "ui"
    ANY = "any"


MODE_CLASSES: dict[AuthMode, frozenset[CredentialClass]] = {
    AuthMode.API: frozenset({CredentialClass.API}),
    AuthMode.UI: frozenset({CredentialClass.UI}),
    AuthMode.ANY: frozenset({CredentialClass.API, CredentialClass.UI}),
}


class AuthorizationGate:
    """Combines credential extraction and classification.

    Stateless: the verdict is recomputed on every call.
    """

    def __init__(self, classifier: CredentialClassifier):
        self.classifier = classifier

    def authorize(self, credentials: RequestCredentials, mode: AuthMode) -> AuthVerdict:
        """Authorize a request's credentials for a route mode.

        ``api`` and ``ui`` modes also require the credential to arrive on a
        channel that admits that class; ``any`` accepts either class from any
        channel.

        Args:
            credentials: Credential sources extracted from the request
            mode: Credential class the route accepts

        Returns:
            AuthVerdict
        """
        credential = extract_credential(credentials)
        if credential is None:
            return AuthVerdict.denied()

        allowed = MODE_CLASSES[mode]
        if mode is not AuthMode.ANY:
            allowed = allowed & CHANNEL_CLASSES[credential.channel]

        return self.classifier.classify(credential.secret, credential.channel, allowed)

    def authorize_request(self, request: Request, mode: AuthMode) -> AuthVerdict:
        return self.authorize(RequestCredentials.from_request(request), mode)


def get_authorization_gate(request: Request) -> AuthorizationGate:
    """FastAPI dependency returning the gate built by ``create_app``."""
    return request.app.state.authorization_gate


def require_admin(mode: AuthMode) -> Callable[[Request], AuthVerdict]:
    """Build a FastAPI dependency that rejects requests not authorized for ``mode``."""

    def dependency(request: Request) -> AuthVerdict:
        verdict = get_authorization_gate(request).authorize_request(request, mode)
        if not verdict.authorized:
            logger.info(f"Admin authorization denied for {request.method} {request.url.path}")
            raise AuthorizationDenied()
        return verdict

    dependency.__name__ = f"require_admin_{mode.value}"
    return dependency
