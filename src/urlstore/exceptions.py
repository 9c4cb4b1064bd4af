"""Exception hierarchy for urlstore.

All exceptions inherit from :class:`UrlstoreError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`urlstore.exit_codes`.
Library callers catch the typed subclasses; the CLI entry point in
:func:`urlstore.app.main` catches ``UrlstoreError`` and exits with the
appropriate code.

Subclass hierarchy::

    UrlstoreError                 (exit 1)
    +-- UnsupportedSourceError    (exit 2)
    +-- UnsupportedOperationError (exit 2)
    +-- AuthError                 (exit 3)
    |   +-- PopupBlockedError
    |   +-- StaleTokenError
    +-- PermissionDeniedError     (exit 3)
    +-- ResponseError             (exit 5)
    |   +-- UnauthorizedError     (exit 3)
    |   +-- NotFoundError         (exit 4)
    |   +-- ServerError           (exit 5)
    +-- ConnectionError_          (exit 6)
    +-- FormatError               (exit 7)
    +-- BackendError              (exit 1)
    +-- ConfigError               (exit 1)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from urlstore.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_FORMAT_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)

if TYPE_CHECKING:
    import httpx


class UrlstoreError(Exception):
    """Base exception for all urlstore errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class UnsupportedSourceError(UrlstoreError):
    """Raised by the CLI when no backend can handle a source URL.

    The library itself reports an unsupported source by returning ``None``
    from :meth:`~urlstore.registry.BackendRegistry.create`.
    """

    exit_code = EXIT_INVALID_USAGE


class UnsupportedOperationError(UrlstoreError):
    """Raised when a backend does not implement the requested operation (e.g. deleting)."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(UrlstoreError):
    """Raised when an authentication handshake fails or is rejected."""

    exit_code = EXIT_AUTH_FAILURE


class PopupBlockedError(AuthError):
    """Raised when the login window could not be opened.

    Retrying without user action will fail the same way, so callers should
    surface this to the user instead of looping.
    """


class StaleTokenError(AuthError):
    """Raised when a stored access token is rejected by the provider.

    By the time this is raised the token has been discarded and the backend
    has been logged out; the user has to log in again.
    """


class PermissionDeniedError(UrlstoreError):
    """Raised when a write is attempted without the ``save``/``edit`` permission."""

    exit_code = EXIT_AUTH_FAILURE


class ResponseError(UrlstoreError):
    """Raised for a non-2xx HTTP response.

    Carries the status code and the raw :class:`httpx.Response` so adapters
    can branch on the status.

    Args:
        message: Human-readable error description.
        status: HTTP status code.
        response: The raw response object, when available.
    """

    exit_code = EXIT_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status: int,
        response: Optional[httpx.Response] = None,
    ):
        super().__init__(message)
        self.status = status
        self.response = response


class UnauthorizedError(ResponseError):
    """Raised when the API returns HTTP 401 or 403."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(ResponseError):
    """Raised when the API returns HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class ServerError(ResponseError):
    """Raised when the API returns an HTTP 5xx server error."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(UrlstoreError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``. These failures are retriable.
    """

    exit_code = EXIT_CONNECTION_ERROR


class FormatError(UrlstoreError):
    """Raised when data cannot be parsed or serialised by a format."""

    exit_code = EXIT_FORMAT_ERROR


class BackendError(UrlstoreError):
    """Raised when a service reports an application-level error (e.g. GraphQL errors)."""

    exit_code = EXIT_GENERIC_FAILURE


class ConfigError(UrlstoreError):
    """Raised for configuration problems (invalid config file, unknown provider)."""

    exit_code = EXIT_GENERIC_FAILURE
