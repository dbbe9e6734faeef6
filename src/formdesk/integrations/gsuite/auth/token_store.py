"""
Grant storage for delegated Google OAuth access.

One ``OAuthGrant`` is kept per external Google account (keyed by email). Forms
reference a grant through their ``google_auth_id`` field; several forms may
share one grant.

Firestore Structure:
    Collection: google_auth
    Document: {grant_id}
        {
            "email": "owner@example.com",
            "access_token": "ya29...",
            "refresh_token": "1//...",
            "expiry_date": Timestamp,
            "name": "Owner",
            "picture_url": "https://...",
            "created_at": Timestamp,
            "updated_at": Timestamp,
            "last_used_at": Timestamp | null
        }

    Collection: forms
    Document: {refKey}
        {"google_auth_id": "{grant_id}" | null, ...other form fields}
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Set

from google.api_core.exceptions import NotFound
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel, ConfigDict

from ....config import AppConfig
from ....errors import ConfigurationError, ResourceNotFound

logger = logging.getLogger(__name__)

GRANTS_COLLECTION = "google_auth"
FORMS_COLLECTION = "forms"
GRANT_LINK_FIELD = "google_auth_id"

FIRESTORE_BATCH_LIMIT = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_grant_id() -> str:
    return uuid.uuid4().hex


class OAuthGrant(BaseModel):
    """A stored Google OAuth delegation for one external account."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    access_token: str
    refresh_token: Optional[str] = None
    expiry_date: Optional[datetime] = None
    name: Optional[str] = None
    picture_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_used_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None, skew_seconds: int = 60) -> bool:
        """True when the access token is past (or within ``skew_seconds`` of) expiry.

        A grant with no recorded expiry is treated as not expired; liveness
        is then decided by the provider.
        """
        if self.expiry_date is None:
            return False
        now = now or utcnow()
        expiry = self.expiry_date
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return (expiry - now).total_seconds() <= skew_seconds


class TokenStore(ABC):
    """Abstract persistence for OAuth grants and form-to-grant links.

    Every operation is a single keyed read or write; concurrent writers are
    last-write-wins.
    """

    @abstractmethod
    def get_by_id(self, grant_id: str) -> Optional[OAuthGrant]:
        """Load a grant by id."""

    @abstractmethod
    def get_by_resource(self, resource_id: str) -> Optional[OAuthGrant]:
        """Load the grant linked to a form, or None when unlinked or dangling."""

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[OAuthGrant]:
        """Load the grant for an external account email."""

    @abstractmethod
    def get_most_recently_used(self) -> Optional[OAuthGrant]:
        """Load the grant with the latest ``last_used_at`` (nulls last)."""

    @abstractmethod
    def upsert(self, grant: OAuthGrant) -> OAuthGrant:
        """Insert or fully overwrite a grant, keyed by ``grant.id``."""

    @abstractmethod
    def touch(self, grant_id: str, used_at: datetime) -> None:
        """Set only ``last_used_at``; a missing grant is left missing."""

    @abstractmethod
    def link_resource_to_grant(self, resource_id: str, grant_id: Optional[str]) -> None:
        """Point an existing form at a grant; ``None`` unlinks it.

        Never creates forms and never deletes grants.

        Raises:
            ResourceNotFound: If the form does not exist
        """

    @abstractmethod
    def delete_by_email(self, email: str) -> bool:
        """Delete the grant for ``email``; True if one was removed."""

    @abstractmethod
    def delete_all(self) -> int:
        """Delete every grant. Destructive; returns the number removed."""


# ==============================================================================
# In-memory store
# ==============================================================================


class InMemoryTokenStore(TokenStore):
    """Thread-safe in-process store for tests and single-instance local runs."""

    def __init__(self, resources: Optional[Iterable[str]] = None):
        self._grants: Dict[str, OAuthGrant] = {}
        self._links: Dict[str, Optional[str]] = {}
        # None accepts any form id
        self._resources: Optional[Set[str]] = set(resources) if resources is not None else None
        self._lock = RLock()
        logger.debug("InMemoryTokenStore initialized")

    def get_by_id(self, grant_id: str) -> Optional[OAuthGrant]:
        with self._lock:
            return self._grants.get(grant_id)

    def get_by_resource(self, resource_id: str) -> Optional[OAuthGrant]:
        with self._lock:
            grant_id = self._links.get(resource_id)
            return self._grants.get(grant_id) if grant_id else None

    def get_by_email(self, email: str) -> Optional[OAuthGrant]:
        with self._lock:
            for grant in self._grants.values():
                if grant.email == email:
                    return grant
            return None

    def get_most_recently_used(self) -> Optional[OAuthGrant]:
        with self._lock:
            used = [g for g in self._grants.values() if g.last_used_at is not None]
            if used:
                return max(used, key=lambda g: g.last_used_at)
            # Nulls last: only fall back to never-used grants when nothing else exists
            return next(iter(self._grants.values()), None)

    def upsert(self, grant: OAuthGrant) -> OAuthGrant:
        with self._lock:
            self._grants[grant.id] = grant
        return grant

    def touch(self, grant_id: str, used_at: datetime) -> None:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is not None:
                self._grants[grant_id] = grant.model_copy(update={"last_used_at": used_at})

    def link_resource_to_grant(self, resource_id: str, grant_id: Optional[str]) -> None:
        with self._lock:
            if self._resources is not None and resource_id not in self._resources:
                raise ResourceNotFound(resource_id)
            self._links[resource_id] = grant_id

    def linked_grant_id(self, resource_id: str) -> Optional[str]:
        with self._lock:
            return self._links.get(resource_id)

    def delete_by_email(self, email: str) -> bool:
        with self._lock:
            grant = self.get_by_email(email)
            if grant is None:
                return False
            del self._grants[grant.id]
            return True

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._grants)
            self._grants.clear()
            return count

    def list_grants(self) -> List[OAuthGrant]:
        with self._lock:
            return list(self._grants.values())


# ==============================================================================
# Firestore store
# ==============================================================================


def _log_firestore_error(action: str, e: Exception) -> None:
    """Log a Firestore failure with a hint for the common causes."""
    error_str = str(e).lower()
    if "permission" in error_str or "forbidden" in error_str:
        hint = "Check Firestore IAM permissions."
    elif "timeout" in error_str or "deadline" in error_str:
        hint = "Firestore may be experiencing latency issues."
    elif "unavailable" in error_str:
        hint = "This may be a temporary outage."
    else:
        hint = ""
    logger.error(f"Firestore error while {action}: {e}. {hint}".rstrip(), exc_info=True)


_GRANT_FIELDS = (
    "email",
    "access_token",
    "refresh_token",
    "expiry_date",
    "name",
    "picture_url",
    "created_at",
    "updated_at",
    "last_used_at",
)


def _grant_to_document(grant: OAuthGrant) -> Dict[str, Any]:
    return {
        "email": grant.email,
        "access_token": grant.access_token,
        "refresh_token": grant.refresh_token,
        "expiry_date": grant.expiry_date,
        "name": grant.name,
        "picture_url": grant.picture_url,
        "created_at": grant.created_at,
        "updated_at": grant.updated_at,
        "last_used_at": grant.last_used_at,
    }


def _document_to_grant(doc_id: str, data: Optional[Dict[str, Any]]) -> Optional[OAuthGrant]:
    if not data:
        return None
    if not data.get("email") or not data.get("access_token"):
        logger.warning(f"Ignoring malformed grant document {doc_id}: missing email or access_token")
        return None
    return OAuthGrant(id=doc_id, **{k: data.get(k) for k in _GRANT_FIELDS})


class FirestoreTokenStore(TokenStore):
    """
    Grant store backed by Google Cloud Firestore.

    Suitable for multi-instance deployments; each method is one keyed read or
    write (plus a single-field query for email lookups). Errors are logged
    and re-raised so callers decide whether they are fatal.
    """

    def __init__(
        self,
        client: firestore.Client,
        grants_collection: str = GRANTS_COLLECTION,
        forms_collection: str = FORMS_COLLECTION,
    ):
        self.db = client
        self.grants_collection = grants_collection
        self.forms_collection = forms_collection
        logger.info(
            f"Initialized FirestoreTokenStore: "
            f"grants={self.grants_collection}, forms={self.forms_collection}"
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> "FirestoreTokenStore":
        """Create the store from application configuration.

        Raises:
            ConfigurationError: If FIRESTORE_PROJECT is not set
            RuntimeError: If the Firestore client cannot be created
        """
        if not config.firestore_project:
            raise ConfigurationError("FIRESTORE_PROJECT environment variable not set")
        try:
            client = firestore.Client(
                project=config.firestore_project,
                database=config.firestore_database,
            )
        except Exception as e:
            error_msg = (
                f"Failed to initialize Firestore client for "
                f"project={config.firestore_project}, database={config.firestore_database}: {e}"
            )
            logger.error(error_msg, exc_info=True)
            raise RuntimeError(error_msg) from e
        return cls(client)

    def _grants(self):
        return self.db.collection(self.grants_collection)

    def _forms(self):
        return self.db.collection(self.forms_collection)

    def get_by_id(self, grant_id: str) -> Optional[OAuthGrant]:
        if not grant_id:
            return None
        try:
            doc = self._grants().document(grant_id).get()
        except Exception as e:
            _log_firestore_error(f"loading grant {grant_id}", e)
            raise
        if not doc.exists:
            logger.debug(f"No grant document found: {grant_id}")
            return None
        return _document_to_grant(doc.id, doc.to_dict())

    def get_by_resource(self, resource_id: str) -> Optional[OAuthGrant]:
        try:
            doc = self._forms().document(resource_id).get()
        except Exception as e:
            _log_firestore_error(f"loading form {resource_id}", e)
            raise
        if not doc.exists:
            return None
        grant_id = (doc.to_dict() or {}).get(GRANT_LINK_FIELD)
        if not grant_id:
            return None
        grant = self.get_by_id(grant_id)
        if grant is None:
            logger.warning(f"Form {resource_id} references missing grant {grant_id}")
        return grant

    def get_by_email(self, email: str) -> Optional[OAuthGrant]:
        if not email or not email.strip():
            logger.warning("get_by_email called with empty email")
            return None
        try:
            docs = list(
                self._grants().where(filter=FieldFilter("email", "==", email)).limit(1).stream()
            )
        except Exception as e:
            _log_firestore_error(f"looking up grant for {email}", e)
            raise
        if not docs:
            return None
        return _document_to_grant(docs[0].id, docs[0].to_dict())

    def get_most_recently_used(self) -> Optional[OAuthGrant]:
        # Firestore orders null below any timestamp, so descending puts nulls last
        try:
            docs = list(
                self._grants()
                .order_by("last_used_at", direction=firestore.Query.DESCENDING)
                .limit(1)
                .stream()
            )
        except Exception as e:
            _log_firestore_error("loading most recently used grant", e)
            raise
        if not docs:
            return None
        return _document_to_grant(docs[0].id, docs[0].to_dict())

    def upsert(self, grant: OAuthGrant) -> OAuthGrant:
        try:
            self._grants().document(grant.id).set(_grant_to_document(grant))
        except Exception as e:
            _log_firestore_error(f"storing grant for {grant.email}", e)
            raise
        logger.info(f"Stored Google grant {grant.id} for {grant.email}")
        return grant

    def touch(self, grant_id: str, used_at: datetime) -> None:
        try:
            self._grants().document(grant_id).update({"last_used_at": used_at})
        except NotFound:
            logger.warning(f"Grant {grant_id} was deleted before its last use could be recorded")
        except Exception as e:
            _log_firestore_error(f"recording use of grant {grant_id}", e)
            raise

    def link_resource_to_grant(self, resource_id: str, grant_id: Optional[str]) -> None:
        try:
            self._forms().document(resource_id).update({GRANT_LINK_FIELD: grant_id})
        except NotFound as e:
            logger.warning(f"Cannot link grant {grant_id}: form {resource_id} does not exist")
            raise ResourceNotFound(resource_id) from e
        except Exception as e:
            _log_firestore_error(f"linking form {resource_id} to grant {grant_id}", e)
            raise
        logger.info(f"Linked form {resource_id} to grant {grant_id}")

    def delete_by_email(self, email: str) -> bool:
        if not email or not email.strip():
            logger.warning("delete_by_email called with empty email")
            return False
        try:
            docs = list(self._grants().where(filter=FieldFilter("email", "==", email)).stream())
            for doc in docs:
                doc.reference.delete()
        except Exception as e:
            _log_firestore_error(f"deleting grant for {email}", e)
            raise
        if docs:
            logger.info(f"Deleted Google grant for {email}")
        return bool(docs)

    def delete_all(self) -> int:
        deleted = 0
        try:
            batch = self.db.batch()
            pending = 0
            for doc in self._grants().stream():
                batch.delete(doc.reference)
                pending += 1
                if pending == FIRESTORE_BATCH_LIMIT:
                    batch.commit()
                    deleted += pending
                    batch = self.db.batch()
                    pending = 0
            if pending:
                batch.commit()
                deleted += pending
        except Exception as e:
            _log_firestore_error("deleting all grants", e)
            raise
        logger.warning(f"Deleted all Google grants ({deleted})")
        return deleted
