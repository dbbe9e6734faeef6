"""
Google Workspace Authentication Module

This module provides delegated Google OAuth grant management for form
integrations.

Features:
- Grant storage (Firestore or in-memory), one grant per Google account
- Form-to-grant linking with a most-recently-used fallback
- Access token validation and refresh before delegated calls

Quick Start:
    >>> from formdesk.integrations.gsuite.auth import GrantResolver, TokenRefresher
    >>>
    >>> grant = resolver.resolve_for_resource("contact-form")
    >>> grant = await refresher.ensure_fresh(grant)
"""

from .scopes import (
    BASE_SCOPES,
    SCOPES,
    SHEETS_SCOPES,
    SHEETS_WRITE_SCOPE,
    USERINFO_EMAIL_SCOPE,
    USERINFO_PROFILE_SCOPE,
)

from .token_store import (
    FirestoreTokenStore,
    InMemoryTokenStore,
    OAuthGrant,
    TokenStore,
)

from .token_lifecycle import (
    GrantResolver,
    TokenRefresher,
    delegated_credentials,
)

__all__ = [
    # Scopes
    'BASE_SCOPES',
    'SCOPES',
    'SHEETS_SCOPES',
    'SHEETS_WRITE_SCOPE',
    'USERINFO_EMAIL_SCOPE',
    'USERINFO_PROFILE_SCOPE',

    # Grant storage
    'FirestoreTokenStore',
    'InMemoryTokenStore',
    'OAuthGrant',
    'TokenStore',

    # Lifecycle
    'GrantResolver',
    'TokenRefresher',
    'delegated_credentials',
]
