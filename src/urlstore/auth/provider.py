"""OAuth provider identity and the auth relay service.

An :class:`OAuthProvider` describes *who* issues tokens (GitHub, Google...).
Adapters point their ``provider`` attribute at a shared instance, which is
what makes sibling adapters share a token.

An :class:`AuthService` is the relay that hosts the OAuth callback page and
publishes ``services.json``, a mapping of provider name to client metadata::

    {"github": {"client_id": "abc"}, "google": {"client_id": "x", "api_key": "y"}}
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

import httpx

from urlstore.exceptions import ConfigError, ConnectionError_
from urlstore.models import ClientMetadata

logger = logging.getLogger(__name__)

DEFAULT_AUTH_SERVICE = "https://auth.madata.dev"


@dataclass(frozen=True)
class OAuthProvider:
    """Identity of an OAuth token issuer.

    Attributes:
        name: Provider name; keys both ``services.json`` and the token store.
        authorize_url: Where the login window is pointed.
        api_domain: Base URL for authenticated API requests.
        params: Extra authorize parameters (e.g. ``scope``).
        phrases: Provider-level message table.
    """

    name: str
    authorize_url: str
    api_domain: str
    params: Mapping[str, str] = field(default_factory=dict)
    phrases: Mapping[str, Union[str, Callable[..., str]]] = field(default_factory=dict)


class AuthService:
    """Client for an auth relay's ``services.json``.

    Args:
        url: Base URL of the relay.
        services: Preloaded client metadata keyed by provider name. When a
            provider is found here no request is made.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        url: str = DEFAULT_AUTH_SERVICE,
        services: Optional[Mapping[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._preloaded = {
            name: ClientMetadata.model_validate(meta) for name, meta in (services or {}).items()
        }
        self._services: Optional[dict[str, ClientMetadata]] = None
        self._transport = transport
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"AuthService({self.url!r})"

    @property
    def callback_url(self) -> str:
        return f"{self.url}/"

    async def get_services(self) -> dict[str, ClientMetadata]:
        """Fetch and memoize ``services.json``.

        A failed fetch is not memoized; the next call tries again.

        Raises:
            ConnectionError_: If the relay cannot be reached.
            ConfigError: If the relay answers with an error or invalid data.
        """
        async with self._lock:
            if self._services is not None:
                return self._services

            services_url = f"{self.url}/services.json"
            logger.debug("Fetching client metadata from %s", services_url)
            try:
                async with httpx.AsyncClient(transport=self._transport, follow_redirects=True) as client:
                    response = await client.get(services_url)
            except httpx.HTTPError as exc:
                raise ConnectionError_(
                    f"Could not fetch auth services from {services_url}: {exc}"
                ) from exc

            if response.status_code >= 400:
                raise ConfigError(
                    f"Auth service {self.url} returned HTTP {response.status_code}"
                )
            try:
                data = response.json()
                self._services = {
                    name: ClientMetadata.model_validate(meta) for name, meta in data.items()
                }
            except (ValueError, AttributeError) as exc:
                raise ConfigError(f"Invalid services.json at {services_url}: {exc}") from exc

            return self._services

    async def client_metadata(self, provider: OAuthProvider) -> ClientMetadata:
        """Return the client registration for *provider*.

        Raises:
            ConfigError: If the relay has no registration for the provider.
        """
        name = provider.name.lower()
        if name in self._preloaded:
            return self._preloaded[name]

        services = await self.get_services()
        meta = services.get(name)
        if meta is None:
            raise ConfigError(f"Auth service {self.url} has no client registered for {provider.name}")
        return meta


_services: dict[str, AuthService] = {}


def get_auth_service(url: str = DEFAULT_AUTH_SERVICE, **kwargs: Any) -> AuthService:
    """Return a shared :class:`AuthService` per relay URL."""
    key = url.rstrip("/")
    if key not in _services:
        _services[key] = AuthService(key, **kwargs)
    return _services[key]
