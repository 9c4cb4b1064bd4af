"""Backend registry and resolver.

The :class:`BackendRegistry` keeps backend classes in registration order and
picks the first one whose :meth:`~urlstore.backend.Backend.test` accepts a
URL. Registration order is therefore the tie-break between overlapping
patterns.

For most use cases, use the module-level :data:`registry` (or the
:func:`create` / :func:`resolve` shortcuts), pre-loaded with the built-in
backends: ``Local``, ``Remote``, ``GithubAPI``, ``GithubGist``, ``GithubFile``.

Third-party packages add backends through the ``urlstore.backends``
entry-point group::

    [project.entry-points."urlstore.backends"]
    dropbox = "urlstore_dropbox:Dropbox"
"""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Any, Iterable, Iterator, Optional, TypeVar

from urlstore.backend import Backend

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "urlstore.backends"
"""The entry-point group name used for backend discovery."""

FALLBACK_BACKEND = "Remote"

B = TypeVar("B", bound=type[Backend])


class BackendRegistry:
    """Ordered registry of backend classes.

    Example::

        registry = BackendRegistry()
        registry.register(Local)
        backend = registry.create("local:settings")
    """

    def __init__(self) -> None:
        self._backends: dict[str, type[Backend]] = {}

    def __iter__(self) -> Iterator[type[Backend]]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._backends

    def register(self, cls: B) -> B:
        """Register a backend class; usable as a class decorator.

        Registering a name again replaces the class in place, keeping its
        position.
        """
        key = cls.name.lower()
        if key in self._backends:
            logger.debug("Replacing backend '%s'", cls.name)
        self._backends[key] = cls
        return cls

    def unregister(self, name: str) -> None:
        self._backends.pop(name.lower(), None)

    def get(self, name: str) -> Optional[type[Backend]]:
        """Look up a backend class by name (case-insensitive)."""
        return self._backends.get(name.lower())

    def all(self) -> list[type[Backend]]:
        return list(self._backends.values())

    def names(self) -> list[str]:
        return [cls.name for cls in self._backends.values()]

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        url: Optional[str] = None,
        base: Optional[type[Backend]] = None,
        **options: Any,
    ) -> Optional[type[Backend]]:
        """Pick the backend class for *url*.

        Args:
            url: Source URL.
            base: Only consider subclasses of this class.
            **options: Backend options. A ``type`` option selects a backend
                by name and skips URL matching.

        Returns:
            The backend class, or ``None`` when nothing matches.
        """
        backend_type = options.get("type")
        if backend_type:
            if isinstance(backend_type, type) and issubclass(backend_type, Backend):
                return backend_type
            return self.get(str(backend_type))

        if not url:
            return None

        for cls in self._backends.values():
            if base is not None and not (issubclass(cls, base) and cls is not base):
                continue
            if cls.test(url, options):
                return cls
        return None

    def create(self, url: Optional[str] = None, **options: Any) -> Optional[Backend]:
        """Create (or reuse) a backend for *url*.

        When no backend matches a URL and no ``type`` option was given, the
        read-only ``Remote`` backend is used. An ``existing`` option (a
        backend or an iterable of backends) is updated in place and returned
        when one of them is an instance of exactly the resolved class.

        Returns:
            The backend, or ``None`` when neither a URL nor a ``type`` option
            is given, or when ``type`` names no registered backend.
        """
        existing = options.pop("existing", None)
        cls = self.resolve(url, **options)
        if cls is None and url and not options.get("type"):
            cls = self.get(FALLBACK_BACKEND)
        if cls is None:
            return None

        for backend in _as_list(existing):
            if type(backend) is cls:
                backend.update(url, **options)
                return backend

        logger.debug("Creating %s backend for %s", cls.name, url)
        return cls(url, **options)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self) -> list[str]:
        """Register backends from the ``urlstore.backends`` entry-point group.

        Returns:
            The names of the backends that were registered. Entry points that
            fail to load are logged as warnings and skipped.
        """
        loaded: list[str] = []
        entry_points = importlib.metadata.entry_points()
        if hasattr(entry_points, "select"):
            eps = entry_points.select(group=ENTRY_POINT_GROUP)
        else:
            eps = entry_points.get(ENTRY_POINT_GROUP, [])  # type: ignore[union-attr]

        for ep in eps:
            try:
                cls = ep.load()
                if not (isinstance(cls, type) and issubclass(cls, Backend)):
                    raise TypeError(f"{ep.value} is not a Backend subclass")
                self.register(cls)
                loaded.append(cls.name)
            except Exception as exc:
                logger.warning("Failed to load backend '%s': %s", ep.name, exc)
        return loaded


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, Backend):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return [value]


def create_default_registry() -> BackendRegistry:
    """Create a :class:`BackendRegistry` pre-loaded with the built-in backends."""
    from urlstore.backends import BUILTIN_BACKENDS

    registry = BackendRegistry()
    for cls in BUILTIN_BACKENDS:
        registry.register(cls)
    return registry


registry = create_default_registry()


def resolve(url: Optional[str] = None, **options: Any) -> Optional[type[Backend]]:
    """Resolve *url* with the default registry."""
    return registry.resolve(url, **options)


def create(url: Optional[str] = None, **options: Any) -> Optional[Backend]:
    """Create a backend for *url* with the default registry."""
    return registry.create(url, **options)
