"""urlstore -- treat cloud services as data stores addressed by URL.

A URL selects a *backend* (GitHub file, gist, GitHub API, local storage, or a
plain read-only fetch), which then loads and stores data through one
interface and handles the OAuth login the service needs::

    import urlstore

    backend = urlstore.create("https://github.com/octocat/data/blob/main/todo.json")
    todos = await backend.load()
    await backend.login()
    await backend.store(todos + [{"title": "New"}])

Modules:
    registry: Backend registry and URL resolution.
    backend: ``Backend`` / ``OAuthBackend`` base classes.
    auth: Token store, auth relay client and the login state machine.
    client: HTTP request pipeline.
    formats: Parse/stringify contract and built-in formats.
    app: Typer CLI entry point.
"""

__version__ = "0.1.0"

from urlstore.backend import Backend, OAuthBackend, Ref  # noqa: E402
from urlstore.exceptions import UrlstoreError  # noqa: E402
from urlstore.permissions import Permissions  # noqa: E402
from urlstore.registry import BackendRegistry, create, registry, resolve  # noqa: E402

__all__ = [
    "Backend",
    "BackendRegistry",
    "OAuthBackend",
    "Permissions",
    "Ref",
    "UrlstoreError",
    "__version__",
    "create",
    "registry",
    "resolve",
]
