"""OAuth login state machine.

:class:`AuthSession` owns the access token of one backend instance and moves
through :class:`AuthState` as it logs in::

    UNAUTHENTICATED -> CHECKING_CACHE -> VALIDATING_USER -> AUTHENTICATED
                            |                 |
                            v (no token,      v (401: token removed)
                               active)     UNAUTHENTICATED
                       POPUP_OPENING -> POPUP_OPEN -> AWAITING_MESSAGE
                                                          |
                                                          v (token)
                                                    VALIDATING_USER

A *passive* login only looks at the stored token and never opens a window;
a stale stored token is removed without raising. An *active* login opens the
provider's authorize page through a :class:`~urlstore.auth.window.WindowHost`
and waits for the window to post back ``{backend, token}``.

Concurrent callers share a single in-flight attempt, so at most one login
window is open per session.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlencode

from pydantic import ValidationError

from urlstore.auth.tokens import TokenStore, token_key
from urlstore.auth.window import PopupWindow, WindowHost, WindowMessage
from urlstore.exceptions import AuthError, PopupBlockedError, StaleTokenError, UnauthorizedError
from urlstore.models import AuthMessage, User
from urlstore.phrases import phrase

if TYPE_CHECKING:
    from urlstore.auth.provider import AuthService, OAuthProvider

logger = logging.getLogger(__name__)

POPUP_NAME = "urlstore-login"
MAX_POPUP_WIDTH = 1000
MAX_POPUP_HEIGHT = 800


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    CHECKING_CACHE = "checking_cache"
    VALIDATING_USER = "validating_user"
    POPUP_OPENING = "popup_opening"
    POPUP_OPEN = "popup_open"
    AWAITING_MESSAGE = "awaiting_message"
    AUTHENTICATED = "authenticated"


class AuthSession:
    """Login state for one backend.

    The *owner* is the backend the session belongs to. The session calls
    back into it for:

    * ``await owner.get_user()`` -- validate the current token,
    * ``owner.client_id`` and ``owner.oauth_params()`` -- authorize URL,
    * ``owner._on_login(user)`` / ``owner._on_logout()`` -- notifications.

    Args:
        owner: The owning backend.
        provider: Token issuer identity; determines the token key.
        auth_service: Relay that hosts the callback page.
        token_store: Where tokens are persisted.
        window_host: Opens the login window and carries its message.
        timeout: Seconds to wait for the login window.
        poll_interval: Seconds between checks of the window's ``closed`` flag.
    """

    def __init__(
        self,
        owner: Any,
        provider: "OAuthProvider",
        auth_service: "AuthService",
        token_store: TokenStore,
        window_host: WindowHost,
        timeout: float = 300,
        poll_interval: float = 0.5,
    ) -> None:
        self._owner = owner
        self.provider = provider
        self.auth_service = auth_service
        self.token_store = token_store
        self.window_host = window_host
        self.timeout = timeout
        self.poll_interval = poll_interval

        self.token_key = token_key(provider, auth_service.url)
        self.access_token: Optional[str] = None
        self.user: Optional[User] = None
        self._state = AuthState.UNAUTHENTICATED
        self._login_task: Optional[asyncio.Future[Optional[User]]] = None
        self._login_task_passive = False

    def __repr__(self) -> str:
        return f"AuthSession({self.provider.name}, {self._state.value})"

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is AuthState.AUTHENTICATED

    @property
    def is_pending(self) -> bool:
        return self._login_task is not None and not self._login_task.done()

    def _set_state(self, state: AuthState) -> None:
        if state is not self._state:
            logger.debug("%s: %s -> %s", self.provider.name, self._state.value, state.value)
            self._state = state

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(self, passive: bool = False) -> Optional[User]:
        """Log in, reusing a stored token when possible.

        Args:
            passive: Only check the stored token; never open a window.

        Returns:
            The logged in :class:`~urlstore.models.User`, or ``None`` when a
            passive login found no usable token.

        Raises:
            PopupBlockedError: If the login window could not be opened.
            StaleTokenError: If the token received from the window is rejected.
            AuthError: If the window reports an error, closes, or times out.
            ConnectionError_: If the provider cannot be reached.
        """
        while True:
            if self.is_authenticated:
                return self.user

            task = self._login_task
            if task is None or task.done():
                task = asyncio.ensure_future(self._run_login(passive))
                self._login_task = task
                self._login_task_passive = passive
                return await asyncio.shield(task)

            task_passive = self._login_task_passive
            user = await asyncio.shield(task)
            if user is not None or passive or not task_passive:
                return user
            # The in-flight attempt was a passive check that found nothing

    async def logout(self) -> bool:
        """Forget the token and user.

        The stored token is removed even when this session never logged in
        with it, e.g. because the provider was unreachable. Only a logged in
        session notifies the owner.

        Returns:
            Whether there was a login or a stored token to forget.
        """
        if not self.is_authenticated:
            had_token = self.token_store.load(self.token_key) is not None
            self.token_store.clear(self.token_key)
            return had_token
        self._reset()
        logger.info("Logged out of %s", self.provider.name)
        self._owner._on_logout()
        return True

    def discard(self) -> None:
        """Drop the token and user without notifying anyone."""
        self._reset()

    def _reset(self) -> None:
        self.token_store.clear(self.token_key)
        self.access_token = None
        self.user = None
        self._set_state(AuthState.UNAUTHENTICATED)

    async def _run_login(self, passive: bool) -> Optional[User]:
        try:
            self._set_state(AuthState.CHECKING_CACHE)
            token = self.token_store.load(self.token_key)
            if token:
                self.access_token = token
                user = await self._validate(active=False)
                if user is not None:
                    return self._authenticated(user)
            self._set_state(AuthState.UNAUTHENTICATED)

            if passive:
                return None

            token = await self._acquire_token()
            self.token_store.save(self.token_key, token)
            self.access_token = token
            user = await self._validate(active=True)
            assert user is not None
            return self._authenticated(user)
        except BaseException:
            if not self.is_authenticated:
                self.access_token = None
                self._set_state(AuthState.UNAUTHENTICATED)
            raise

    async def _validate(self, active: bool) -> Optional[User]:
        self._set_state(AuthState.VALIDATING_USER)
        try:
            return await self._owner.get_user()
        except UnauthorizedError as exc:
            if exc.status != 401:
                raise
            self.token_store.clear(self.token_key)
            self.access_token = None
            self._set_state(AuthState.UNAUTHENTICATED)
            if active:
                raise StaleTokenError(phrase(self._owner, "stale_token")) from None
            logger.info("Stored %s token is no longer valid, removed it", self.provider.name)
            return None

    def _authenticated(self, user: User) -> User:
        self.user = user
        self._set_state(AuthState.AUTHENTICATED)
        logger.info("Logged in to %s as %s", self.provider.name, user.username)
        self._owner._on_login(user)
        return user

    # ------------------------------------------------------------------
    # Login window
    # ------------------------------------------------------------------

    def popup_geometry(self) -> dict[str, int]:
        """Size and position of the login window, centered on the screen."""
        inner_width, inner_height = self.window_host.inner_size
        screen_width, screen_height = self.window_host.screen_size
        width = min(MAX_POPUP_WIDTH, inner_width - 100)
        height = min(MAX_POPUP_HEIGHT, inner_height - 100)
        return {
            "width": width,
            "height": height,
            "left": (screen_width - width) // 2,
            "top": (screen_height - height) // 2,
        }

    def authorize_url(self) -> str:
        """The provider URL the login window is opened at."""
        state = {"url": self.window_host.location, "backend": self.provider.name}
        params: dict[str, Any] = {}
        client_id = getattr(self._owner, "client_id", None)
        if client_id:
            params["client_id"] = client_id
        params["state"] = json.dumps(state, separators=(",", ":"))
        params.update(self.provider.params)
        params.update(self._owner.oauth_params() or {})
        return f"{self.provider.authorize_url}?{urlencode(params)}"

    async def _acquire_token(self) -> str:
        self._set_state(AuthState.POPUP_OPENING)
        geometry = self.popup_geometry()
        features = ",".join(f"{key}={value}" for key, value in geometry.items())

        popup = self.window_host.open(self.authorize_url(), POPUP_NAME, features)
        if popup is None:
            raise PopupBlockedError(phrase(self._owner, "popup_blocked"))
        self._set_state(AuthState.POPUP_OPEN)

        loop = asyncio.get_running_loop()
        result: asyncio.Future[str] = loop.create_future()

        def on_message(message: WindowMessage) -> None:
            if message.source is not popup or result.done():
                return
            try:
                data = AuthMessage.model_validate(message.data)
            except ValidationError:
                logger.debug("Malformed login message: %r", message.data)
                result.set_exception(AuthError(phrase(self._owner, "authentication_error")))
                return
            if data.backend.lower() != self.provider.name.lower():
                logger.debug("Ignoring login message for %s", data.backend)
                return
            if data.error or not data.token:
                logger.debug("Login window reported: %s", data.error or "no token")
                result.set_exception(AuthError(phrase(self._owner, "authentication_error")))
                return
            result.set_result(data.token)

        self.window_host.add_message_listener(on_message)
        self._set_state(AuthState.AWAITING_MESSAGE)
        try:
            return await self._wait_for_token(result, popup)
        finally:
            self.window_host.remove_message_listener(on_message)
            if not result.done():
                result.cancel()
            if not popup.closed:
                popup.close()

    async def _wait_for_token(self, result: "asyncio.Future[str]", popup: PopupWindow) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise AuthError(phrase(self._owner, "login_timeout"))
            try:
                return await asyncio.wait_for(
                    asyncio.shield(result), timeout=min(self.poll_interval, remaining)
                )
            except asyncio.TimeoutError:
                if result.done():
                    return result.result()
                if popup.closed:
                    raise AuthError(phrase(self._owner, "login_window_closed")) from None
