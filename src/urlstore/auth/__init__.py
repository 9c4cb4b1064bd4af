"""Authentication: provider identity, token persistence, and the login session."""

from urlstore.auth.provider import AuthService, OAuthProvider, get_auth_service
from urlstore.auth.session import AuthSession, AuthState
from urlstore.auth.tokens import TokenStore, token_key
from urlstore.auth.window import (
    LoopbackWindowHost,
    PopupWindow,
    WindowHost,
    WindowMessage,
    get_default_window_host,
)

__all__ = [
    "AuthService",
    "AuthSession",
    "AuthState",
    "LoopbackWindowHost",
    "OAuthProvider",
    "PopupWindow",
    "TokenStore",
    "WindowHost",
    "WindowMessage",
    "get_auth_service",
    "get_default_window_host",
    "token_key",
]
