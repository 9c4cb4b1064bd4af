"""Tests for the login state machine."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

import pytest

from urlstore.auth.provider import AuthService, OAuthProvider
from urlstore.auth.session import AuthSession, AuthState
from urlstore.auth.tokens import TokenStore
from urlstore.exceptions import (
    AuthError,
    ConnectionError_,
    PopupBlockedError,
    StaleTokenError,
    UnauthorizedError,
)
from urlstore.models import User
from urlstore.storage import MemoryStore

PROVIDER = OAuthProvider(
    name="Github",
    authorize_url="https://github.com/login/oauth/authorize",
    api_domain="https://api.github.com/",
    params={"allow_signup": "false"},
)
TOKEN_KEY = "urlstore:token:auth.example.com/github"


class Owner:
    """Stands in for the backend an :class:`AuthSession` belongs to."""

    client_id = "client-abc"
    phrases: dict[str, Any] = {}

    def __init__(self, valid_tokens: tuple[str, ...] = ("tok-123",)) -> None:
        self.valid_tokens = valid_tokens
        self.session: Optional[AuthSession] = None
        self.user_calls = 0
        self.events: list[str] = []

    async def get_user(self) -> User:
        self.user_calls += 1
        assert self.session is not None
        if self.session.access_token not in self.valid_tokens:
            raise UnauthorizedError("HTTP 401: Bad credentials", status=401)
        return User(username="octocat")

    def oauth_params(self) -> dict[str, str]:
        return {"scope": "user repo"}

    def _on_login(self, user: User) -> None:
        self.events.append(f"login:{user.username}")

    def _on_logout(self) -> None:
        self.events.append("logout")


def _session(
    host: Any,
    storage: Optional[MemoryStore] = None,
    owner: Optional[Owner] = None,
    timeout: float = 5,
) -> tuple[AuthSession, Owner, MemoryStore]:
    owner = owner or Owner()
    storage = storage if storage is not None else MemoryStore()
    session = AuthSession(
        owner,
        PROVIDER,
        auth_service=AuthService("https://auth.example.com"),
        token_store=TokenStore(storage),
        window_host=host,
        timeout=timeout,
        poll_interval=0.01,
    )
    owner.session = session
    return session, owner, storage


# ---------------------------------------------------------------------------
# Passive login
# ---------------------------------------------------------------------------


class TestPassiveLogin:
    @pytest.mark.asyncio
    async def test_no_token_returns_none_without_popup(self, window_host) -> None:
        session, owner, _ = _session(window_host)

        assert await session.login(passive=True) is None
        assert window_host.opened == []
        assert session.state is AuthState.UNAUTHENTICATED
        assert owner.user_calls == 0

    @pytest.mark.asyncio
    async def test_stored_token_logs_in(self, window_host) -> None:
        session, owner, _ = _session(window_host, MemoryStore({TOKEN_KEY: "tok-123"}))

        user = await session.login(passive=True)

        assert user is not None and user.username == "octocat"
        assert session.is_authenticated
        assert session.access_token == "tok-123"
        assert owner.events == ["login:octocat"]
        assert window_host.opened == []

    @pytest.mark.asyncio
    async def test_stale_token_is_removed_silently(self, window_host) -> None:
        session, owner, storage = _session(window_host, MemoryStore({TOKEN_KEY: "expired"}))

        assert await session.login(passive=True) is None
        assert TOKEN_KEY not in storage
        assert session.access_token is None
        assert session.state is AuthState.UNAUTHENTICATED
        assert owner.events == []

    @pytest.mark.asyncio
    async def test_already_authenticated(self, window_host) -> None:
        session, owner, _ = _session(window_host, MemoryStore({TOKEN_KEY: "tok-123"}))
        await session.login(passive=True)
        await session.login(passive=True)
        await session.login()
        assert owner.user_calls == 1

    @pytest.mark.asyncio
    async def test_forbidden_is_not_a_stale_token(self, window_host) -> None:
        session, owner, storage = _session(window_host, MemoryStore({TOKEN_KEY: "tok-123"}))

        async def forbidden() -> User:
            raise UnauthorizedError("HTTP 403: rate limited", status=403)

        owner.get_user = forbidden  # type: ignore[method-assign]
        with pytest.raises(UnauthorizedError):
            await session.login(passive=True)
        assert storage.get(TOKEN_KEY) == "tok-123"
        assert session.state is AuthState.UNAUTHENTICATED


# ---------------------------------------------------------------------------
# Active login
# ---------------------------------------------------------------------------


class TestActiveLogin:
    @pytest.mark.asyncio
    async def test_popup_login(self, window_host) -> None:
        session, owner, storage = _session(window_host)

        user = await session.login()

        assert user is not None and user.username == "octocat"
        assert session.is_authenticated
        assert storage.get(TOKEN_KEY) == "tok-123"
        assert owner.events == ["login:octocat"]
        assert len(window_host.opened) == 1
        assert window_host.opened[0].closed

    @pytest.mark.asyncio
    async def test_authorize_url(self, window_host) -> None:
        session, _, _ = _session(window_host)
        await session.login()

        url = urlsplit(window_host.opened[0].url)
        params = {key: values[0] for key, values in parse_qs(url.query).items()}
        assert f"{url.scheme}://{url.netloc}{url.path}" == PROVIDER.authorize_url
        assert params["client_id"] == "client-abc"
        assert params["scope"] == "user repo"
        assert params["allow_signup"] == "false"
        assert json.loads(params["state"]) == {
            "url": "http://127.0.0.1:8765/",
            "backend": "Github",
        }

    @pytest.mark.asyncio
    async def test_concurrent_logins_share_one_popup(self, window_host) -> None:
        session, owner, _ = _session(window_host)

        first, second = await asyncio.gather(session.login(), session.login())

        assert first is second
        assert len(window_host.opened) == 1
        assert owner.events == ["login:octocat"]

    @pytest.mark.asyncio
    async def test_concurrent_logins_share_one_failure(self, make_window_host) -> None:
        host = make_window_host(reply=lambda host, popup: popup.close())
        session, owner, _ = _session(host)

        first, second = await asyncio.gather(session.login(), session.login(), return_exceptions=True)

        assert isinstance(first, AuthError)
        assert first is second
        assert len(host.opened) == 1
        assert owner.events == []
        assert session.state is AuthState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_concurrent_logins_share_blocked_popup(self, make_window_host) -> None:
        host = make_window_host(blocked=True)
        session, _, _ = _session(host)

        first, second = await asyncio.gather(session.login(), session.login(), return_exceptions=True)

        assert isinstance(first, PopupBlockedError)
        assert first is second

    @pytest.mark.asyncio
    async def test_messages_from_other_windows_are_ignored(self, make_window_host) -> None:
        def reply(host, popup) -> None:
            host.send(host.popup_class("https://elsewhere.example.com"), {"backend": "Github", "token": "evil"})
            host.send(popup, {"backend": "Dropbox", "token": "wrong-provider"})
            host.send(popup, {"backend": "github", "token": "tok-123"})

        host = make_window_host(reply=reply)
        session, _, storage = _session(host)

        await session.login()
        assert storage.get(TOKEN_KEY) == "tok-123"

    @pytest.mark.asyncio
    async def test_error_message(self, make_window_host) -> None:
        host = make_window_host(reply={"backend": "Github", "error": "access_denied"})
        session, _, storage = _session(host)

        with pytest.raises(AuthError, match="Authentication error"):
            await session.login()
        assert session.state is AuthState.UNAUTHENTICATED
        assert TOKEN_KEY not in storage
        assert host.opened[0].closed

    @pytest.mark.asyncio
    async def test_malformed_message(self, make_window_host) -> None:
        host = make_window_host(reply={"token": "no-backend"})
        session, _, _ = _session(host)

        with pytest.raises(AuthError, match="Authentication error"):
            await session.login()

    @pytest.mark.asyncio
    async def test_blocked_popup(self, make_window_host) -> None:
        host = make_window_host(blocked=True)
        session, _, _ = _session(host)

        with pytest.raises(PopupBlockedError, match="popup was blocked"):
            await session.login()
        assert session.state is AuthState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_window_closed(self, make_window_host) -> None:
        host = make_window_host(reply=lambda host, popup: popup.close())
        session, _, _ = _session(host)

        with pytest.raises(AuthError, match="Login window was closed"):
            await session.login()

    @pytest.mark.asyncio
    async def test_timeout(self, make_window_host) -> None:
        host = make_window_host()
        session, _, _ = _session(host, timeout=0.05)

        with pytest.raises(AuthError, match="Timed out"):
            await session.login()
        assert host.opened[0].closed

    @pytest.mark.asyncio
    async def test_rejected_token(self, make_window_host) -> None:
        host = make_window_host(reply={"backend": "Github", "token": "revoked"})
        session, _, storage = _session(host)

        with pytest.raises(StaleTokenError):
            await session.login()
        assert TOKEN_KEY not in storage
        assert session.access_token is None

    @pytest.mark.asyncio
    async def test_active_login_after_failed_passive_opens_popup(
        self, window_host
    ) -> None:
        session, _, _ = _session(window_host)

        assert await session.login(passive=True) is None
        user = await session.login()

        assert user is not None
        assert len(window_host.opened) == 1


# ---------------------------------------------------------------------------
# Logout and geometry
# ---------------------------------------------------------------------------


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout(self, window_host) -> None:
        session, owner, storage = _session(window_host, MemoryStore({TOKEN_KEY: "tok-123"}))
        await session.login(passive=True)

        assert await session.logout() is True

        assert owner.events == ["login:octocat", "logout"]
        assert TOKEN_KEY not in storage
        assert session.user is None
        assert not session.is_authenticated

    @pytest.mark.asyncio
    async def test_logout_when_logged_out_does_nothing(self, window_host) -> None:
        session, owner, _ = _session(window_host)
        assert await session.logout() is False
        assert owner.events == []

    @pytest.mark.asyncio
    async def test_logout_clears_token_left_by_failed_login(self, window_host) -> None:
        owner = Owner()

        async def unreachable() -> User:
            raise ConnectionError_("Connection failed")

        owner.get_user = unreachable  # type: ignore[method-assign]
        session, _, storage = _session(window_host, MemoryStore({TOKEN_KEY: "tok-123"}), owner=owner)
        with pytest.raises(ConnectionError_):
            await session.login(passive=True)
        assert TOKEN_KEY in storage

        assert await session.logout() is True

        assert TOKEN_KEY not in storage
        assert owner.events == []

    def test_discard_is_silent(self, window_host) -> None:
        session, owner, storage = _session(window_host, MemoryStore({TOKEN_KEY: "tok-123"}))
        session.discard()
        assert TOKEN_KEY not in storage
        assert owner.events == []


def test_popup_geometry(window_host) -> None:
    session, _, _ = _session(window_host)
    assert session.popup_geometry() == {"width": 1000, "height": 700, "left": 460, "top": 190}
