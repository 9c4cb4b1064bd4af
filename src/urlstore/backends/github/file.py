"""Files in GitHub repositories.

``https://github.com/<owner>/<repo>/blob/<branch>/<path>`` and
``https://raw.githubusercontent.com/<owner>/<repo>/<branch>/<path>`` both
decompose into a :class:`GithubFileRef`. Missing parts fall back to
:attr:`GithubFile.defaults` (repo ``mv-data``, path ``data.json``), and a
missing owner becomes the logged in user.

Anonymous reads go through ``raw.githubusercontent.com``; logged in reads
and all writes use the contents API.
"""

from __future__ import annotations

import base64
import dataclasses
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlsplit

from urlstore.backend import Ref, RefLike
from urlstore.backends.github.base import PREVIEW_ACCEPT, Github
from urlstore.exceptions import BackendError, NotFoundError, PermissionDeniedError, ResponseError
from urlstore.models import User, WriteResult

logger = logging.getLogger(__name__)


@dataclass
class GithubFileRef(Ref):
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    path: Optional[str] = None
    repo_info: Optional[dict[str, Any]] = field(default=None, repr=False, compare=False)


def to_base64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def from_base64(data: str) -> str:
    return base64.b64decode(data).decode("utf-8")


class GithubFile(Github):
    name = "GithubFile"
    title = "GitHub file"
    urls = (
        {"hostname": "github.com"},
        {"hostname": "raw.githubusercontent.com"},
    )
    ref_type = GithubFileRef
    defaults = {"repo": "mv-data", "path": "data.json"}
    capabilities = frozenset({"auth", "write", "delete", "upload"})
    phrases = {
        "updated_file": lambda name="file": f"Updated {name}",
        "created_file": lambda name="file": f"Created {name}",
        "deleted_file": lambda name="file": f"Deleted {name}",
        "no_push_permission": lambda repo: f"You do not have permission to write to repository {repo}",
    }

    @classmethod
    def parse_url(cls, source: Optional[str]) -> GithubFileRef:
        """Split a GitHub URL into owner, repo, branch and path.

        Without a source every part is ``None``; otherwise missing parts get
        their :attr:`defaults`.
        """
        ref = GithubFileRef(url=source)
        if not source:
            return ref

        parts = urlsplit(source)
        raw = (parts.hostname or "").lower() == "raw.githubusercontent.com"
        segments = parts.path[1:].split("/") if parts.path else []

        ref.owner = segments.pop(0) if segments else None
        ref.repo = segments.pop(0) if segments else None

        # No repo means no branch or path either
        if ref.repo:
            has_branch = raw or (bool(segments) and segments[0] == "blob")
            if not raw and segments and segments[0] == "blob":
                segments.pop(0)
            if has_branch and segments:
                ref.branch = segments.pop(0)
            ref.path = "/".join(segments)

        for name in ("owner", "repo", "branch", "path"):
            if not getattr(ref, name):
                setattr(ref, name, cls.defaults.get(name))
        return ref

    @staticmethod
    def same_repo(ref1: GithubFileRef, ref2: GithubFileRef) -> bool:
        return ref1 is ref2 or (ref1.owner == ref2.owner and ref1.repo == ref2.repo)

    def get_ref(self, ref: RefLike = None) -> GithubFileRef:
        resolved = super().get_ref(ref)
        assert isinstance(resolved, GithubFileRef)
        if not resolved.owner and self.user is not None:
            resolved.owner = self.user.username
        return resolved

    def _on_login(self, user: User) -> None:
        if not self.ref.owner:
            self.ref.owner = user.username  # type: ignore[attr-defined]
        super()._on_login(user)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get(self, ref: Ref, **options: Any) -> Any:
        assert isinstance(ref, GithubFileRef)
        if self.is_authenticated:
            call = f"repos/{ref.owner}/{ref.repo}/contents/{ref.path}"
            try:
                response = await self.request(call, {"ref": ref.branch}, headers=PREVIEW_ACCEPT)
            except NotFoundError:
                return None
            if ref.repo and isinstance(response, dict) and response.get("content") is not None:
                return from_base64(response["content"])
            return response

        if not ref.owner or not ref.repo:
            return None

        # Anonymous reads avoid the API rate limit
        branch = ref.branch or "main"
        try:
            text = await self.client.request(self._raw_url(ref, branch), response_type="text")
        except NotFoundError:
            if ref.branch:
                return None
            # Repos created before the rename still use "master"
            try:
                text = await self.client.request(self._raw_url(ref, "master"), response_type="text")
            except NotFoundError:
                return None
            branch = "master"
        ref.branch = branch
        return text

    @staticmethod
    def _raw_url(ref: GithubFileRef, branch: str) -> str:
        return f"https://raw.githubusercontent.com/{ref.owner}/{ref.repo}/{branch}/{ref.path}"

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def put(
        self,
        data: Optional[str],
        ref: Optional[Ref] = None,
        is_encoded: bool = False,
        **options: Any,
    ) -> WriteResult:
        return await self._write("put", self.get_ref(ref), data or "", is_encoded=is_encoded)

    async def delete(self, ref: Ref) -> WriteResult:
        return await self._write("delete", self.get_ref(ref))

    async def _write(
        self,
        kind: str,
        ref: GithubFileRef,
        data: str = "",
        is_encoded: bool = False,
    ) -> WriteResult:
        if await self.fetch_repo_info(ref) is None:
            await self.create_repo(ref)

        if not await self.can_push(ref):
            raise PermissionDeniedError(self.phrase("no_push_permission", f"{ref.owner}/{ref.repo}"))

        call = f"repos/{ref.owner}/{ref.repo}/contents/{ref.path}"
        prefix = self.options.get("commit_prefix", "")

        # Current SHA, needed to update or delete an existing file
        try:
            existing = await self.request(call, {"ref": ref.branch})
        except NotFoundError:
            existing = None

        if kind == "delete":
            if existing is None:
                return WriteResult(type="delete")
            info = await self.request(
                call,
                {
                    "message": prefix + self.phrase("deleted_file", ref.path),
                    "branch": ref.branch,
                    "sha": existing["sha"],
                },
                "DELETE",
            )
            return WriteResult(type="delete", info=info)

        body: dict[str, Any] = {
            "content": data if is_encoded else to_base64(data),
            "branch": ref.branch,
        }
        if existing is not None:
            body["message"] = prefix + self.phrase("updated_file", ref.path)
            body["sha"] = existing["sha"]
        else:
            body["message"] = prefix + self.phrase("created_file", ref.path)

        info = await self.request(call, body, "PUT")
        return WriteResult(type="update" if existing is not None else "create", info=info)

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def fetch_repo_info(self, ref: Optional[GithubFileRef] = None) -> Optional[dict[str, Any]]:
        """Fetch (once) the repository info of *ref*, or ``None`` if the repo does not exist.

        Also fills in the default branch when *ref* has none.

        Raises:
            BackendError: If *ref* has no owner or repo.
        """
        ref = self.get_ref(ref)
        main_ref = self.ref
        assert isinstance(main_ref, GithubFileRef)

        if ref.repo_info is None:
            if ref is not main_ref and main_ref.repo_info and self.same_repo(ref, main_ref):
                ref.repo_info = main_ref.repo_info
            elif ref.owner and ref.repo:
                try:
                    ref.repo_info = await self.request(f"repos/{ref.owner}/{ref.repo}")
                except NotFoundError:
                    return None
            else:
                raise BackendError("Cannot get repo info, owner and/or repo name missing")

        if ref.repo_info and ref.branch is None:
            ref.branch = ref.repo_info.get("default_branch")
        return ref.repo_info

    async def can_push(self, ref: Optional[GithubFileRef] = None) -> bool:
        ref = self.get_ref(ref)
        if ref.repo_info:
            return bool((ref.repo_info.get("permissions") or {}).get("push"))
        # The repo does not exist yet, so only its would-be owner can create it
        user = self.user
        return bool(user and ref.owner and user.username.lower() == ref.owner.lower())

    async def create_repo(self, ref: Optional[GithubFileRef] = None, **options: Any) -> GithubFileRef:
        ref = self.get_ref(ref)
        logger.info("Creating repository %s/%s", ref.owner, ref.repo)
        ref.repo_info = await self.request(
            "user/repos",
            {"name": ref.repo, "private": self.options.get("private") is True, **options},
            "POST",
        )
        if ref.branch is None:
            ref.branch = ref.repo_info.get("default_branch")

        main_ref = self.ref
        assert isinstance(main_ref, GithubFileRef)
        if main_ref.repo_info is None and self.same_repo(ref, main_ref):
            main_ref.repo_info = ref.repo_info
        return ref

    # ------------------------------------------------------------------
    # Uploads and public URLs
    # ------------------------------------------------------------------

    async def upload(self, file: Union[bytes, str, Path], path: Optional[str] = None) -> str:
        """Upload a binary file next to this backend's file.

        Args:
            file: File contents, or a filesystem path to read them from.
            path: Target file name, relative to the directory of the
                backend's path. Defaults to the file's own name.

        Returns:
            A public URL for the uploaded file.
        """
        if isinstance(file, bytes):
            content = file
            name = path
        else:
            source = Path(file)
            content = source.read_bytes()
            name = path or source.name
        if not name:
            raise ValueError("A target path is required when uploading raw bytes")

        ref = self.get_ref()
        directory = re.sub(r"[^/]+$", "", ref.path or "")
        target = dataclasses.replace(ref, path=directory + name)

        result = await self.put(
            base64.b64encode(content).decode("ascii"), ref=target, is_encoded=True
        )
        sha = ((result.info or {}).get("commit") or {}).get("sha")
        return await self.get_file_url(target.path or name, ref=target, sha=sha)

    async def get_pages_info(self, ref: Optional[GithubFileRef] = None) -> Optional[dict[str, Any]]:
        ref = self.get_ref(ref)
        info = await self.fetch_repo_info(ref)
        if not info:
            return None
        if "pages_info" not in info:
            info["pages_info"] = await self.request(
                f"repos/{info['full_name']}/pages",
                headers={"Accept": "application/vnd.github+json"},
            )
        return info["pages_info"]

    async def get_repo_url(self, ref: Optional[GithubFileRef] = None, sha: Optional[str] = None) -> str:
        """Public base URL of the repository: GitHub Pages if enabled, else a CDN."""
        if self.options.get("repo_url"):
            return self.options["repo_url"]
        ref = self.get_ref(ref)

        try:
            pages = await self.get_pages_info(ref)
            if pages and pages.get("html_url"):
                return pages["html_url"]
        except ResponseError as exc:
            logger.debug("No GitHub Pages for %s/%s: %s", ref.owner, ref.repo, exc)

        full_name = (ref.repo_info or {}).get("full_name") or f"{ref.owner}/{ref.repo}"
        return f"https://cdn.jsdelivr.net/gh/{full_name}@{sha or ref.branch or 'latest'}/"

    async def get_file_url(
        self, path: Optional[str] = None, ref: Optional[GithubFileRef] = None, sha: Optional[str] = None
    ) -> str:
        """Public URL for *path* in the repository."""
        ref = self.get_ref(ref)
        repo_url = await self.get_repo_url(ref, sha=sha)
        if not repo_url.endswith("/"):
            repo_url += "/"
        return repo_url + (path or ref.path or "")
