"""User-facing message tables.

Each backend class may define a ``phrases`` mapping of phrase id to either a
string or a callable taking the phrase arguments. :func:`phrase` resolves an
id by walking the backend's class hierarchy, then the backend's OAuth
provider, then :data:`GENERIC_PHRASES`.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Union

PhraseValue = Union[str, Callable[..., str]]

GENERIC_PHRASES: dict[str, PhraseValue] = {
    "authentication_error": "Authentication error",
    "popup_blocked": "Login popup was blocked! Please check your popup blocker settings.",
    "login_window_closed": "Login window was closed before authentication completed",
    "login_timeout": "Timed out waiting for the login window",
    "stale_token": "Access token invalid, please log in again",
    "something_went_wrong_while_connecting": (
        lambda name="the server": f"Something went wrong while connecting to {name}"
    ),
    "no_permission": lambda action="save": f"You do not have permission to {action} data",
    "unsupported_operation": (
        lambda name, action: f"{name} does not support {action}"
    ),
    "unsupported_source": lambda source: f"No backend can handle {source}",
}


def _render(value: PhraseValue, args: tuple[Any, ...]) -> str:
    if callable(value):
        return value(*args)
    return value


def _lookup(table: Optional[Mapping[str, PhraseValue]], phrase_id: str) -> Optional[PhraseValue]:
    if not table:
        return None
    return table.get(phrase_id)


def phrase(owner: Any, phrase_id: str, *args: Any) -> str:
    """Resolve *phrase_id* for *owner* (a backend class or instance).

    Returns:
        The rendered phrase, or ``"<id> <args...>"`` when no table defines it.
    """
    cls = owner if isinstance(owner, type) else type(owner)

    for klass in cls.__mro__:
        value = _lookup(klass.__dict__.get("phrases"), phrase_id)
        if value is not None:
            return _render(value, args)

    provider = getattr(cls, "provider", None)
    value = _lookup(getattr(provider, "phrases", None), phrase_id)
    if value is not None:
        return _render(value, args)

    value = _lookup(GENERIC_PHRASES, phrase_id)
    if value is not None:
        return _render(value, args)

    return " ".join([phrase_id, *(str(arg) for arg in args)])
