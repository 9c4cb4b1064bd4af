"""Capability/permission set with aggregated change notification.

A :class:`Permissions` object maps permission names (``read``, ``edit``,
``add``, ``delete``, ``save``, ``login``, ``logout``, ``upload``) to
booleans. UI code and autosave logic subscribe with :meth:`on_change` and
react to the list of names that actually changed.

Example::

    perms = Permissions(read=True, edit=False, save=False)
    perms.on_change(lambda changed: print(changed))
    perms.update(edit=True, save=True)   # prints ['edit', 'save']
    perms.update(edit=True)              # no notification, nothing changed
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[str]], object]

KNOWN_PERMISSIONS = (
    "read",
    "edit",
    "add",
    "delete",
    "save",
    "login",
    "logout",
    "upload",
)


class Permissions:
    """Mapping of permission name to boolean.

    Every mutation is a merge: keys not mentioned keep their value, and a
    single notification listing the changed names is sent only when at least
    one value changed.
    """

    def __init__(self, **initial: bool) -> None:
        self._values: dict[str, bool] = {k: bool(v) for k, v in initial.items()}
        self._listeners: list[ChangeListener] = []

    def __getitem__(self, name: str) -> bool:
        return self._values.get(name, False)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __repr__(self) -> str:
        granted = ", ".join(name for name, value in self._values.items() if value)
        return f"Permissions({granted})"

    def get(self, name: str, default: bool = False) -> bool:
        return self._values.get(name, default)

    def as_dict(self) -> dict[str, bool]:
        return dict(self._values)

    def update(self, changes: dict[str, bool] | None = None, **kwargs: bool) -> list[str]:
        """Merge *changes* into the set.

        Args:
            changes: Mapping of permission name to new value.
            **kwargs: Same as *changes*, for call-site convenience.

        Returns:
            The names whose value changed, in the order they were given.
        """
        merged = dict(changes or {})
        merged.update(kwargs)

        changed: list[str] = []
        for name, value in merged.items():
            value = bool(value)
            previous = self._values.get(name)
            self._values[name] = value
            if previous != value:
                changed.append(name)

        if changed:
            logger.debug("Permissions changed: %s", ", ".join(changed))
            for listener in list(self._listeners):
                listener(changed)

        return changed

    def on(self, *names: str) -> list[str]:
        """Grant every permission in *names*."""
        return self.update({name: True for name in names})

    def off(self, *names: str) -> list[str]:
        """Revoke every permission in *names*."""
        return self.update({name: False for name in names})

    def on_change(self, listener: ChangeListener) -> None:
        """Register *listener*, called with the list of changed names."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def off_change(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
