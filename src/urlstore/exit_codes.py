"""Process exit codes of the ``urlstore`` command.

Every :class:`~urlstore.exceptions.UrlstoreError` subclass carries one of
these, so scripts can branch on ``$?`` instead of parsing stderr::

    $ urlstore load local:missing
    Error: Nothing stored at local:missing
    $ echo $?
    4
"""

EXIT_SUCCESS = 0

EXIT_GENERIC_FAILURE = 1
"""Anything without a more specific code, including backend errors."""

EXIT_INVALID_USAGE = 2
"""No backend handles the URL, or the backend cannot do what was asked."""

EXIT_AUTH_FAILURE = 3
"""Login failed, the token was rejected, or a permission is missing."""

EXIT_NOT_FOUND = 4
"""Nothing is stored at the URL."""

EXIT_SERVER_ERROR = 5
"""The service answered with an error status."""

EXIT_CONNECTION_ERROR = 6
"""The service could not be reached."""

EXIT_FORMAT_ERROR = 7
"""The data could not be parsed or serialised."""
