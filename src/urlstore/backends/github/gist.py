"""GitHub gists."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from urlstore.backend import Ref
from urlstore.backends.github.base import Github
from urlstore.exceptions import NotFoundError
from urlstore.models import WriteResult
from urlstore.urls import match_urls


@dataclass
class GistRef(Ref):
    owner: Optional[str] = None
    gist_id: Optional[str] = None
    path: Optional[str] = None


class GithubGist(Github):
    """A file in a gist.

    ``https://gist.github.com/<owner>/NEW`` points at a gist that does not
    exist yet; the first :meth:`put` creates it.
    """

    name = "GithubGist"
    title = "GitHub Gist"
    urls = (
        {"hostname": "gist.github.com", "pathname": "/:owner/:gist_id"},
        {"hostname": "gist.github.com", "pathname": "/:owner/:gist_id/*/:path"},
    )
    ref_type = GistRef
    defaults = {"path": "data.json"}
    capabilities = frozenset({"auth", "write"})

    @classmethod
    def parse_url(cls, source: Optional[str]) -> GistRef:
        match = match_urls(source, cls.urls)
        groups = match.groups if match is not None else {}
        gist_id = groups.get("gist_id")
        return GistRef(
            url=source,
            owner=groups.get("owner"),
            gist_id=None if gist_id == "NEW" else gist_id,
            path=groups.get("path") or cls.defaults["path"],
        )

    async def get(self, ref: Ref, **options: Any) -> Optional[str]:
        assert isinstance(ref, GistRef)
        if not ref.gist_id:
            return None

        if self.is_authenticated:
            try:
                data = await self.request(f"gists/{ref.gist_id}")
            except NotFoundError:
                return None
            files = data.get("files") or {}
            if ref.path in files:
                return files[ref.path].get("content")
            if not files:
                return None
            # Requested file not in the gist, fall back to its first file
            filename, gist_file = next(iter(files.items()))
            ref.path = filename
            return gist_file.get("content")

        # Raw URLs avoid the API rate limit for anonymous reads
        path = "" if ref.path == self.defaults["path"] else ref.path
        url = f"https://gist.githubusercontent.com/{ref.owner}/{ref.gist_id}/raw/{path}"
        try:
            return await self.client.request(url, response_type="text")
        except NotFoundError:
            return None

    async def can_push(self, ref: GistRef) -> bool:
        """A gist has no collaborators; only its owner can write to it."""
        user = self.user
        return bool(user and ref.owner and user.username.lower() == ref.owner.lower())

    async def fork(self, ref: GistRef) -> dict[str, Any]:
        return await self.request(f"gists/{ref.gist_id}/forks", None, "POST")

    async def put(self, data: Optional[str], ref: Optional[Ref] = None, **options: Any) -> WriteResult:
        ref = ref if ref is not None else self.ref
        assert isinstance(ref, GistRef)
        original_id = ref.gist_id
        body: dict[str, Any] = {"files": {ref.path: {"content": data or ""}}}

        if ref.gist_id:
            if not await self.can_push(ref):
                forked = await self.fork(ref)
                ref.owner = forked["owner"]["login"]
                ref.gist_id = forked["id"]
            info = await self.request(f"gists/{ref.gist_id}", body, "PATCH")
        else:
            body["public"] = True
            info = await self.request("gists", body, "POST")

        ref.gist_id = info["id"]
        ref.owner = (info.get("owner") or {}).get("login", ref.owner)
        return WriteResult(type="update" if ref.gist_id == original_id else "create", info=info)
