"""Shared test fixtures for urlstore.

Provides an isolated configuration environment, an in-memory key/value
store, a scriptable login window host and an auth service with preloaded
client metadata, so that no test touches real user config or the network.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from urlstore.auth import provider as provider_module
from urlstore.auth.provider import AuthService
from urlstore.auth.window import PopupWindow, WindowHost, WindowMessage
from urlstore import output
from urlstore.storage import MemoryStore, set_default_storage


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and storage to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    clears all URLSTORE_* environment variables, installs a fresh
    in-memory default store and forgets cached auth services.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["URLSTORE_AUTH_SERVICE", "URLSTORE_LOGIN_TIMEOUT", "URLSTORE_STORAGE"]:
        monkeypatch.delenv(var, raising=False)

    set_default_storage(MemoryStore())
    monkeypatch.setattr(provider_module, "_services", {})
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    set_default_storage(None)
    output.install(None)


# ---------------------------------------------------------------------------
# Login window
# ---------------------------------------------------------------------------


class FakePopup(PopupWindow):
    def __init__(self, url: str) -> None:
        self.url = url
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


Reply = Union[dict[str, Any], Callable[["FakeWindowHost", FakePopup], None], None]


class FakeWindowHost(WindowHost):
    """Records opened windows and answers them with *reply*.

    *reply* is either the message data the window posts back, or a callable
    ``reply(host, popup)`` run once the login flow is listening.
    """

    popup_class = FakePopup

    def __init__(self, reply: Reply = None, blocked: bool = False) -> None:
        super().__init__()
        self.reply = reply
        self.blocked = blocked
        self.opened: list[FakePopup] = []

    @property
    def location(self) -> str:
        return "http://127.0.0.1:8765/"

    def open(self, url: str, name: str, features: str) -> Optional[PopupWindow]:
        if self.blocked:
            return None
        popup = FakePopup(url)
        self.opened.append(popup)
        if self.reply is not None:
            asyncio.get_running_loop().call_soon(self._answer, popup)
        return popup

    def send(self, source: Any, data: Any) -> None:
        self.post_message(WindowMessage(source=source, data=data))

    def _answer(self, popup: FakePopup) -> None:
        if callable(self.reply):
            self.reply(self, popup)
        else:
            self.send(popup, self.reply)


@pytest.fixture
def make_window_host() -> type[FakeWindowHost]:
    """The scriptable window host class, for tests that need a custom reply."""
    return FakeWindowHost


@pytest.fixture
def window_host() -> FakeWindowHost:
    """A window host whose login window posts back a GitHub token."""
    return FakeWindowHost(reply={"backend": "Github", "token": "tok-123"})


# ---------------------------------------------------------------------------
# HTTP routing
# ---------------------------------------------------------------------------


Route = Union[Callable[[httpx.Request], httpx.Response], Any]


class Router:
    """MockTransport handler dispatching on ``(method, host + path)``.

    A route is either a callable returning a response or a JSON payload
    served with status 200. Unrouted requests get a 404.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, f"{request.url.host}{request.url.path}"))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def sent(self, method: str, target: str) -> list[httpx.Request]:
        """Requests sent to *target* (``host + path``) with *method*."""
        return [
            r for r in self.requests
            if r.method == method and f"{r.url.host}{r.url.path}" == target
        ]


@pytest.fixture
def router() -> Router:
    return Router()


# ---------------------------------------------------------------------------
# Auth service and storage
# ---------------------------------------------------------------------------


AUTH_SERVICE_URL = "https://auth.example.com"
GITHUB_TOKEN_KEY = "urlstore:token:auth.example.com/github"
GITHUB_USER = {"login": "foo", "name": "Foo", "avatar_url": "https://avatars.example.com/foo"}


@pytest.fixture
def auth_service() -> AuthService:
    """Auth service with preloaded client metadata (no services.json fetch)."""
    return AuthService(AUTH_SERVICE_URL, services={"github": {"client_id": "client-abc"}})


@pytest.fixture
def storage() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def github_options(
    auth_service: AuthService, window_host: FakeWindowHost, storage: MemoryStore, router: Router
) -> Callable[..., dict[str, Any]]:
    """Build options for a GitHub backend whose requests go to *router*.

    Usage::

        backend = GithubFile(url, **github_options())
    """

    def make(**extra: Any) -> dict[str, Any]:
        return {
            "auth_service": auth_service,
            "window_host": window_host,
            "storage": storage,
            "transport": httpx.MockTransport(router),
            **extra,
        }

    return make


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def github_user(router: Router) -> dict[str, Any]:
    """Serve the account info of user ``foo`` at ``/user``."""
    router.routes[("GET", "api.github.com/user")] = GITHUB_USER
    return GITHUB_USER


@pytest.fixture
def logged_in(github_user: dict[str, Any], storage: MemoryStore) -> str:
    """A stored, valid GitHub token, so backends log in passively."""
    storage.set(GITHUB_TOKEN_KEY, "tok-123")
    return "tok-123"
