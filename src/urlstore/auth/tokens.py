"""Persistent access tokens keyed by provider identity.

Tokens live in a :class:`~urlstore.storage.KeyValueStore` under a key derived
from the auth service host and the provider name only. Every adapter that
shares a provider (e.g. all GitHub adapters) therefore shares one token::

    urlstore:token:auth.madata.dev/github

See Also:
    :class:`~urlstore.auth.session.AuthSession` -- reads and writes tokens.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlsplit

from urlstore.storage import KeyValueStore, get_default_storage

if TYPE_CHECKING:
    from urlstore.auth.provider import OAuthProvider

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "urlstore:token:"


def token_key(provider: "OAuthProvider", auth_service_url: str) -> str:
    """Storage key for *provider*'s token issued through *auth_service_url*."""
    parts = urlsplit(auth_service_url)
    host = parts.netloc or parts.path
    return f"{TOKEN_KEY_PREFIX}{host}/{provider.name.lower()}"


class TokenStore:
    """Read/write access tokens.

    Concurrent writers are not coordinated; the last write wins.

    Args:
        storage: Underlying key/value store. Defaults to the process-wide
            store from :func:`~urlstore.storage.get_default_storage`.
    """

    def __init__(self, storage: Optional[KeyValueStore] = None) -> None:
        self._storage = storage if storage is not None else get_default_storage()

    @property
    def storage(self) -> KeyValueStore:
        return self._storage

    def load(self, key: str) -> Optional[str]:
        token = self._storage.get(key)
        return token or None

    def save(self, key: str, token: str) -> None:
        logger.debug("Storing token under %s", key)
        self._storage.set(key, token)

    def clear(self, key: str) -> None:
        logger.debug("Removing token %s", key)
        self._storage.remove(key)
