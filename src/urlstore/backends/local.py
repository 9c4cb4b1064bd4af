"""``local:`` URLs, stored in the key/value store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from urlstore.backend import Backend, Ref
from urlstore.exceptions import BackendError
from urlstore.models import WriteResult
from urlstore.storage import KeyValueStore, get_default_storage


@dataclass
class LocalRef(Ref):
    key: Optional[str] = None


class Local(Backend):
    """Data kept under a key of a :class:`~urlstore.storage.KeyValueStore`.

    ``local:settings`` reads and writes the key ``settings``.

    Args:
        url: A ``local:<key>`` URL.
        **options: ``storage`` selects the store (defaults to the shared one).
    """

    name = "Local"
    title = "Local storage"
    urls = ({"protocol": "local", "pathname": ":key"},)
    ref_type = LocalRef
    capabilities = frozenset({"write", "delete"})
    phrases = {
        "missing_key": lambda url=None: f"No storage key in {url or 'the URL'}, use local:<key>",
    }

    def __init__(self, url: Optional[str] = None, **options: Any) -> None:
        super().__init__(url, **options)
        self.update_permissions(read=True, edit=True, save=True, delete=True)

    @property
    def storage(self) -> KeyValueStore:
        storage = self.options.get("storage")
        return storage if storage is not None else get_default_storage()

    @classmethod
    def parse_url(cls, source: Optional[str]) -> LocalRef:
        if not source:
            return LocalRef(url=source)
        _, _, key = source.partition(":")
        return LocalRef(url=source, key=key or None)

    async def get(self, ref: Ref, **options: Any) -> Optional[str]:
        assert isinstance(ref, LocalRef)
        if not ref.key:
            return None
        return self.storage.get(ref.key)

    async def put(self, data: Optional[str], ref: Optional[Ref] = None, **options: Any) -> WriteResult:
        ref = ref if ref is not None else self.ref
        assert isinstance(ref, LocalRef)
        if not ref.key:
            raise BackendError(self.phrase("missing_key", ref.url))
        if not data:
            self.storage.remove(ref.key)
            return WriteResult(type="delete")

        exists = ref.key in self.storage
        self.storage.set(ref.key, data)
        return WriteResult(type="update" if exists else "create")

    async def delete(self, ref: Ref) -> WriteResult:
        return await self.put(None, ref=ref)
