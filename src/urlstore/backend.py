"""Backend base classes.

A backend adapts one cloud service (or local store) to a common data-store
interface. Each adapter class declares:

* ``name`` -- registry name used with the ``type`` option,
* ``urls`` -- URL patterns it handles (see :mod:`urlstore.urls`),
* ``ref_type`` -- the :class:`Ref` dataclass its URLs parse into,
* ``defaults`` -- default values for ref fields missing from the URL,
* ``capabilities`` -- any of ``auth``, ``write``, ``delete``, ``upload``.

Adapters implement the low-level ``get`` / ``put`` / ``delete`` /
``upload`` coroutines. Callers use the gated high-level operations
:meth:`Backend.load`, :meth:`Backend.store` and :meth:`Backend.remove`, which
wait for the backend to be ready, resolve the target ref and apply the
format contract.

:class:`OAuthBackend` adds an :class:`~urlstore.auth.session.AuthSession`
and an :class:`~urlstore.client.AsyncClient` for services that need a login.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Optional, Union
from urllib.parse import urljoin

from urlstore.auth.provider import AuthService, OAuthProvider, get_auth_service
from urlstore.auth.session import AuthSession
from urlstore.auth.tokens import TokenStore
from urlstore.auth.window import get_default_window_host
from urlstore.client import AsyncClient
from urlstore.config import resolve_settings
from urlstore.events import EventEmitter
from urlstore.exceptions import (
    PermissionDeniedError,
    StaleTokenError,
    UnauthorizedError,
    UnsupportedOperationError,
)
from urlstore.formats import JSON, Format, FormatSpec, formats
from urlstore.models import Settings, User, WriteResult
from urlstore.permissions import Permissions
from urlstore.phrases import phrase
from urlstore.urls import PatternSpec, test_urls

logger = logging.getLogger(__name__)

_ABSOLUTE_URL = re.compile(r"^\w+:")


@dataclass
class Ref:
    """Location of a piece of data within a backend.

    Adapters subclass this with the fields their URLs decompose into.
    """

    url: Optional[str] = None


RefLike = Union[str, Ref, None]


class Backend(EventEmitter):
    """Base class for all backends.

    Args:
        url: Source URL describing the data location.
        **options: Backend options. Keys naming ref fields (e.g. ``path``)
            override the values parsed from *url*. Common options:
            ``parse`` / ``stringify`` callables, ``format``.
    """

    name: ClassVar[str] = "Backend"
    title: ClassVar[str] = ""
    urls: ClassVar[tuple[PatternSpec, ...]] = ()
    ref_type: ClassVar[type[Ref]] = Ref
    defaults: ClassVar[dict[str, Any]] = {}
    capabilities: ClassVar[frozenset[str]] = frozenset()
    use_cache: ClassVar[bool] = True
    provider: ClassVar[Optional[OAuthProvider]] = None
    phrases: ClassVar[dict[str, Any]] = {}

    def __init__(self, url: Optional[str] = None, **options: Any) -> None:
        EventEmitter.__init__(self)
        self.permissions = Permissions()
        self.permissions.on_change(self._permissions_changed)
        self.source: Optional[str] = None
        self.ref: Ref = self.ref_type()
        self.options: dict[str, Any] = {}
        self.update(url, **options)

    def __str__(self) -> str:
        return f"{self.name} ({self.source})"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source!r}>"

    # ------------------------------------------------------------------
    # Class-level API
    # ------------------------------------------------------------------

    @classmethod
    def test(cls, url: Optional[str], options: Optional[Mapping[str, Any]] = None) -> bool:
        """Whether this backend handles *url*."""
        return test_urls(url, cls.urls)

    @classmethod
    def parse_url(cls, source: Optional[str]) -> Ref:
        """Decompose *source* into a :class:`Ref`."""
        return cls.ref_type(url=source)

    @classmethod
    def supports(cls, capability: str) -> bool:
        return capability in cls.capabilities

    @classmethod
    def phrase(cls, phrase_id: str, *args: Any) -> str:
        return phrase(cls, phrase_id, *args)

    # ------------------------------------------------------------------
    # Instance setup
    # ------------------------------------------------------------------

    def update(self, url: Optional[str] = None, **options: Any) -> None:
        """Point this backend at a new *url* with new *options*."""
        self.source = url
        self.options = options
        ref = self.parse_url(url)
        overrides = {
            f.name: options[f.name] for f in dataclasses.fields(ref) if f.name in options
        }
        self.ref = dataclasses.replace(ref, **overrides) if overrides else ref

    def equals(self, other: Any) -> bool:
        return other is self or (
            isinstance(other, Backend) and type(other) is type(self) and other.source == self.source
        )

    def update_permissions(self, **changes: bool) -> list[str]:
        return self.permissions.update(changes)

    def _permissions_changed(self, changed: list[str]) -> None:
        self.emit("permissionschange", changed)

    async def ready(self) -> None:
        """Wait until the backend can serve requests."""

    async def aclose(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "Backend":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Refs and formats
    # ------------------------------------------------------------------

    def get_ref(self, ref: RefLike = None) -> Ref:
        """Resolve *ref* against this backend's own ref.

        * ``None`` -- this backend's ref.
        * an absolute URL -- parsed with :meth:`parse_url`.
        * a relative path -- replaces the ``path`` of this backend's ref, or
          is resolved against the source URL for refs without a path.
        * a :class:`Ref` -- returned as is.
        """
        if ref is None:
            return self.ref
        if isinstance(ref, Ref):
            return ref
        if _ABSOLUTE_URL.match(ref):
            return self.parse_url(ref)
        if any(f.name == "path" for f in dataclasses.fields(self.ref)):
            return dataclasses.replace(self.ref, path=ref)  # type: ignore[call-arg]
        return self.parse_url(urljoin(self.source or "", ref))

    @property
    def format(self) -> Format:
        spec: Optional[FormatSpec] = self.options.get("format")
        if spec is None:
            return JSON()
        return formats.resolve(spec)

    def parse(self, text: str) -> Any:
        parser: Optional[Callable[[str], Any]] = self.options.get("parse")
        if parser is not None:
            return parser(text)
        return self.format.parse(text)

    def stringify(self, data: Any) -> str:
        serializer: Optional[Callable[[Any], str]] = self.options.get("stringify")
        if serializer is not None:
            return serializer(data)
        return self.format.stringify(data)

    # ------------------------------------------------------------------
    # High-level operations
    # ------------------------------------------------------------------

    async def load(self, ref: RefLike = None, **options: Any) -> Any:
        """Read and parse data.

        Returns:
            The parsed data, or ``None`` if nothing is stored at *ref*.
        """
        await self.ready()
        target = self.get_ref(ref)
        data = await self.get(target, **options)
        if not isinstance(data, str):
            return data
        if data.startswith("\ufeff"):
            data = data[1:]
        return self.parse(data)

    async def store(self, data: Any, ref: RefLike = None, **options: Any) -> Optional[WriteResult]:
        """Serialise and write *data*. Strings are written as is.

        Raises:
            PermissionDeniedError: If the ``save`` permission is not granted.
            UnsupportedOperationError: If the backend is read-only.
        """
        await self.ready()
        if not self.permissions["save"]:
            raise PermissionDeniedError(self.phrase("no_permission", "save"))
        if not self.supports("write"):
            raise UnsupportedOperationError(self.phrase("unsupported_operation", self.name, "writing"))

        target = self.get_ref(ref)
        serialized = data if data is None or isinstance(data, str) else self.stringify(data)
        return await self.put(serialized, ref=target, **options)

    async def remove(self, ref: RefLike = None) -> Optional[WriteResult]:
        """Delete the data at *ref*.

        Raises:
            UnsupportedOperationError: If the backend cannot delete.
            PermissionDeniedError: If the ``save`` permission is not granted.
        """
        await self.ready()
        if not self.supports("delete"):
            raise UnsupportedOperationError(self.phrase("unsupported_operation", self.name, "deleting"))
        if not self.permissions["save"]:
            raise PermissionDeniedError(self.phrase("no_permission", "delete"))
        return await self.delete(self.get_ref(ref))

    # ------------------------------------------------------------------
    # Low-level operations, implemented by adapters
    # ------------------------------------------------------------------

    async def get(self, ref: Ref, **options: Any) -> Any:
        """Fetch raw data; a string is parsed by :meth:`load`, ``None`` means not found."""
        raise UnsupportedOperationError(self.phrase("unsupported_operation", self.name, "reading"))

    async def put(self, data: Optional[str], ref: Optional[Ref] = None, **options: Any) -> Optional[WriteResult]:
        raise UnsupportedOperationError(self.phrase("unsupported_operation", self.name, "writing"))

    async def delete(self, ref: Ref) -> Optional[WriteResult]:
        raise UnsupportedOperationError(self.phrase("unsupported_operation", self.name, "deleting"))

    async def upload(self, file: Union[bytes, str], path: Optional[str] = None) -> str:
        raise UnsupportedOperationError(self.phrase("unsupported_operation", self.name, "uploading"))

    async def get_user(self) -> Optional[User]:
        return None

    def oauth_params(self) -> dict[str, str]:
        """Extra parameters for the provider's authorize URL."""
        return {}


class OAuthBackend(Backend):
    """Backend for services that require an OAuth login.

    A passive login (stored token only) starts as soon as the backend is
    created inside a running event loop, or on the first :meth:`ready` call
    otherwise.

    Args:
        url: Source URL.
        **options: In addition to :class:`Backend` options:

            * ``client_id`` / ``api_key`` -- skip the auth service lookup.
            * ``auth_service`` -- :class:`~urlstore.auth.provider.AuthService`
              or its URL.
            * ``storage`` -- :class:`~urlstore.storage.KeyValueStore` for tokens.
            * ``window_host`` -- :class:`~urlstore.auth.window.WindowHost`.
            * ``transport`` -- httpx transport for API requests.
            * ``settings`` -- :class:`~urlstore.models.Settings` to use instead
              of the resolved configuration.
            * ``sync_with`` -- another :class:`OAuthBackend` to mirror.
    """

    capabilities = frozenset({"auth"})

    def __init__(self, url: Optional[str] = None, **options: Any) -> None:
        if self.provider is None:
            raise TypeError(f"{type(self).__name__} must define a provider")

        settings: Settings = options.get("settings") or resolve_settings()
        self.client_id: Optional[str] = None
        self.api_key: Optional[str] = None

        super().__init__(url, **options)

        service = options.get("auth_service") or settings.auth_service
        if not isinstance(service, AuthService):
            service = get_auth_service(service, services=settings.services)
        self.auth_service: AuthService = service

        self.session = AuthSession(
            self,
            self.provider,
            auth_service=self.auth_service,
            token_store=TokenStore(options.get("storage")),
            window_host=options.get("window_host") or get_default_window_host(),
            timeout=options.get("login_timeout", settings.login_timeout),
        )
        self.client = AsyncClient(
            self.provider.api_domain,
            token=lambda: self.session.access_token,
            config=settings.request,
            use_cache=self.use_cache,
            transport=options.get("transport"),
            name=self.name,
        )

        self._passive_login: Optional[asyncio.Future[None]] = None
        self._background: set[asyncio.Future[Any]] = set()
        self.permissions.on("login")

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self._start_passive_login()

        if options.get("sync_with") is not None:
            self.sync_with(options["sync_with"])

    def update(self, url: Optional[str] = None, **options: Any) -> None:
        super().update(url, **options)
        if options.get("client_id"):
            self.client_id = options["client_id"]
        if options.get("api_key"):
            self.api_key = options["api_key"]

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def _start_passive_login(self) -> asyncio.Future[None]:
        if self._passive_login is None:
            self._passive_login = asyncio.ensure_future(self._run_passive_login())
        return self._passive_login

    async def _run_passive_login(self) -> None:
        try:
            await self.session.login(passive=True)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Could not restore %s login: %s", self.name, exc)

    async def _resolve_client(self) -> None:
        if self.client_id:
            return
        meta = await self.auth_service.client_metadata(self.provider)  # type: ignore[arg-type]
        self.client_id = meta.client_id
        if meta.api_key and "api_key" not in self.options:
            self.api_key = meta.api_key

    async def ready(self) -> None:
        """Resolve the OAuth client and wait for the passive login to settle."""
        await self._resolve_client()
        await asyncio.shield(self._start_passive_login())

    async def aclose(self) -> None:
        for task in (self._passive_login, *self._background):
            if task is not None and not task.done():
                task.cancel()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def user(self) -> Optional[User]:
        return self.session.user

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token

    async def login(self, passive: bool = False) -> Optional[User]:
        """Log in; see :meth:`~urlstore.auth.session.AuthSession.login`."""
        if not passive:
            await self._resolve_client()
        return await self.session.login(passive=passive)

    async def logout(self) -> bool:
        """Log out; see :meth:`~urlstore.auth.session.AuthSession.logout`."""
        return await self.session.logout()

    def _on_login(self, user: User) -> None:
        self.permissions.update(login=False, logout=True)
        self.emit("login", user)

    def _on_logout(self) -> None:
        self.permissions.update(
            edit=False, add=False, delete=False, save=False, login=True, logout=False
        )
        self.emit("logout")

    def sync_with(self, other: "OAuthBackend") -> None:
        """Follow *other*'s logins and logouts. Not two-way."""
        if other.is_authenticated and not self.is_authenticated:
            self._spawn(self.session.login(passive=True))

        def on_login(event: Any) -> None:
            if not self.is_authenticated:
                self._spawn(self.session.login(passive=True))

        def on_logout(event: Any) -> None:
            self._spawn(self.logout())

        other.on("login", on_login)
        other.on("logout", on_logout)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(self, endpoint: str, body: Any = None, method: str = "GET", **kwargs: Any) -> Any:
        """Authenticated request against the provider's API.

        Raises:
            StaleTokenError: If the provider rejects the token of a logged in
                session. The backend is logged out first.
        """
        try:
            return await self.client.request(endpoint, body, method, **kwargs)
        except UnauthorizedError as exc:
            if exc.status == 401 and self.is_authenticated:
                logger.info("%s rejected the stored token, logging out", self.name)
                await self.logout()
                raise StaleTokenError(self.phrase("stale_token")) from exc
            raise
