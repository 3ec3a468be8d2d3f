"""
Per-user identifier namespacing for multi-tenant push.

Locally generated ids (machine, project, session, message) are only
unique inside one installation.  Once they reach the shared server they
can collide with ids from another user's installation, so every id is
rewritten into a namespace owned by the authenticated user before it
leaves the machine.

Manifesto:
    The transform must be:
    - **Deterministic:** same (local id, user) → same id, across runs and machines
    - **Isolating:** different users never share a transformed id
    - **Shape-preserving:** output is always a canonical RFC 4122 UUID string
    - **Total:** no input makes it raise; degenerate input takes the keyed fallback

Architecture:
    ::

        BASE_NAMESPACE ──uuid5(user_id)──► user namespace
        user namespace ──uuid5(local_id)──► transformed id

        degenerate input (cannot be UTF-8 encoded):
        HMAC-SHA256(BASE_NAMESPACE.bytes, "<user ns>:<local id>")[:16]
            └─► stamped as a version-5 UUID

Examples:
    >>> a = transform_id("session-1", "user-a")
    >>> a == transform_id("session-1", "user-a")
    True
    >>> a == transform_id("session-1", "user-b")
    False

Tags:
    hashing, uuid5, idempotency, deduplication, multi-tenant, usage-spine

Doc-Types:
    - API Reference
    - Idempotency Patterns Guide
"""

from __future__ import annotations

import hashlib
import hmac
import uuid

from usage_spine.core.errors import ValidationError

# RFC 4122 DNS namespace; must never change or every transformed id changes with it.
BASE_NAMESPACE = uuid.UUID("6ba7b810-9dad-11d1-80b4-00c04fd430c8")


def _keyed_fallback(namespace: uuid.UUID, name: str) -> uuid.UUID:
    message = f"{namespace}:{name}".encode("utf-8", "surrogatepass")
    digest = hmac.new(BASE_NAMESPACE.bytes, message, hashlib.sha256).digest()
    return uuid.UUID(bytes=digest[:16], version=5)


def _derive(namespace: uuid.UUID, name: str) -> uuid.UUID:
    try:
        return uuid.uuid5(namespace, name)
    except (UnicodeEncodeError, TypeError, AttributeError):
        return _keyed_fallback(namespace, str(name))


def user_namespace(user_id: str) -> uuid.UUID:
    """Derive the namespace owned by *user_id* (stage one)."""
    if not user_id:
        raise ValidationError("Cannot derive an id namespace from an empty user id")
    return _derive(BASE_NAMESPACE, user_id)


def transform_id(local_id: str, user_id: str) -> str:
    """
    Rewrite *local_id* into the namespace of *user_id*.

    Pure function of its inputs; see the module docstring for the
    derivation.

    Args:
        local_id: Identifier as stored locally
        user_id: Authenticated (server-side) user id

    Returns:
        Canonical lower-case UUID string
    """
    return str(_derive(user_namespace(user_id), local_id))


class NamespaceTransformer:
    """Session-scoped transformer bound to one authenticated user.

    Memoises results; a push session sees the same machine, project and
    session ids over and over.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.namespace = user_namespace(user_id)
        self._cache: dict[str, str] = {}

    def transform(self, local_id: str) -> str:
        cached = self._cache.get(local_id)
        if cached is None:
            cached = str(_derive(self.namespace, local_id))
            self._cache[local_id] = cached
        return cached

    def __call__(self, local_id: str) -> str:
        return self.transform(local_id)

    def __repr__(self) -> str:
        return f"NamespaceTransformer(namespace={self.namespace})"
