"""Tests for files in GitHub repositories."""

from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from urlstore.backends.github import GithubFile, GithubGist
from urlstore.backends.github.file import from_base64, to_base64
from urlstore.exceptions import PermissionDeniedError, StaleTokenError

REPO = "https://github.com/foo/bar"
CONTENTS = "api.github.com/repos/foo/bar/contents/data.json"
TOKEN_KEY = "urlstore:token:auth.example.com/github"


def repo_info(push: bool = True) -> dict:
    return {"full_name": "foo/bar", "default_branch": "main", "permissions": {"push": push}}


def created(request: httpx.Request) -> httpx.Response:
    return httpx.Response(201, json={"content": {"path": "data.json"}, "commit": {"sha": "c1"}})


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------


class TestParseUrl:
    def test_blob_url(self) -> None:
        ref = GithubFile.parse_url("https://github.com/foo/bar/blob/main/data/x.json")
        assert (ref.owner, ref.repo, ref.branch, ref.path) == ("foo", "bar", "main", "data/x.json")

    def test_raw_url(self) -> None:
        ref = GithubFile.parse_url("https://raw.githubusercontent.com/foo/bar/dev/x.json")
        assert (ref.owner, ref.repo, ref.branch, ref.path) == ("foo", "bar", "dev", "x.json")

    def test_repo_url_without_branch(self) -> None:
        ref = GithubFile.parse_url(REPO)
        assert (ref.owner, ref.repo, ref.branch, ref.path) == ("foo", "bar", None, "data.json")

    def test_owner_only_gets_defaults(self) -> None:
        ref = GithubFile.parse_url("https://github.com/foo")
        assert (ref.repo, ref.path) == ("mv-data", "data.json")

    def test_bare_host_gets_defaults(self) -> None:
        ref = GithubFile.parse_url("https://github.com")
        assert (ref.owner, ref.repo, ref.branch, ref.path) == (None, "mv-data", None, "data.json")
        assert GithubFile.test("https://github.com")

    def test_tree_path_without_blob(self) -> None:
        ref = GithubFile.parse_url("https://github.com/foo/bar/notes/todo.json")
        assert ref.branch is None
        assert ref.path == "notes/todo.json"

    def test_no_source(self) -> None:
        ref = GithubFile.parse_url(None)
        assert ref.owner is None and ref.path is None

    def test_matches(self) -> None:
        assert GithubFile.test(REPO)
        assert GithubFile.test("https://raw.githubusercontent.com/foo/bar/main/x.json")
        assert not GithubFile.test("https://gist.github.com/foo/abc")

    def test_base64_helpers(self) -> None:
        assert to_base64("café") == base64.b64encode("café".encode()).decode()
        assert from_base64(to_base64("café")) == "café"


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class TestRead:
    @pytest.mark.asyncio
    async def test_anonymous_read_uses_raw_url(self, router, github_options) -> None:
        router.routes[("GET", "raw.githubusercontent.com/foo/bar/main/data.json")] = (
            lambda request: httpx.Response(200, text='{"a": 1}')
        )

        async with GithubFile(REPO, **github_options()) as backend:
            assert await backend.load() == {"a": 1}
            assert backend.ref.branch == "main"

        assert "Authorization" not in router.requests[-1].headers

    @pytest.mark.asyncio
    async def test_anonymous_read_falls_back_to_master(self, router, github_options) -> None:
        router.routes[("GET", "raw.githubusercontent.com/foo/bar/master/data.json")] = (
            lambda request: httpx.Response(200, text='{"old": true}')
        )

        async with GithubFile(REPO, **github_options()) as backend:
            assert await backend.load() == {"old": True}
            assert backend.ref.branch == "master"

    @pytest.mark.asyncio
    async def test_anonymous_read_with_branch_does_not_fall_back(self, router, github_options) -> None:
        router.routes[("GET", "raw.githubusercontent.com/foo/bar/master/data.json")] = (
            lambda request: httpx.Response(200, text="{}")
        )

        async with GithubFile(f"{REPO}/blob/dev/data.json", **github_options()) as backend:
            assert await backend.load() is None

    @pytest.mark.asyncio
    async def test_logged_in_read_uses_contents_api(self, router, github_options, logged_in) -> None:
        router.routes[("GET", CONTENTS)] = {"content": to_base64('{"a": 1}'), "sha": "s1"}

        async with GithubFile(REPO, **github_options()) as backend:
            assert await backend.load() == {"a": 1}
            assert backend.is_authenticated
            assert backend.user is not None and backend.user.username == "foo"
            assert backend.user.url == "https://github.com/foo"

        request = router.sent("GET", CONTENTS)[0]
        assert request.headers["Authorization"] == "Bearer tok-123"
        assert request.headers["Accept"] == "application/vnd.github.squirrel-girl-preview"
        assert "ref" not in request.url.params

    @pytest.mark.asyncio
    async def test_logged_in_read_of_missing_file(self, router, github_options, logged_in) -> None:
        async with GithubFile(REPO, **github_options()) as backend:
            assert await backend.load() is None


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


class TestWrite:
    @pytest.mark.asyncio
    async def test_store_requires_login(self, router, github_options) -> None:
        async with GithubFile(REPO, **github_options()) as backend:
            with pytest.raises(PermissionDeniedError):
                await backend.store({"a": 1})
        assert router.sent("PUT", CONTENTS) == []

    @pytest.mark.asyncio
    async def test_create_file(self, router, github_options, logged_in) -> None:
        router.routes[("GET", "api.github.com/repos/foo/bar")] = repo_info()
        router.routes[("PUT", CONTENTS)] = created

        async with GithubFile(REPO, **github_options()) as backend:
            result = await backend.store({"a": 1})

        assert result is not None and result.type == "create"
        assert result.info["commit"]["sha"] == "c1"
        body = json.loads(router.sent("PUT", CONTENTS)[0].content)
        assert body == {
            "content": to_base64('{\n\t"a": 1\n}'),
            "branch": "main",
            "message": "Created data.json",
        }

    @pytest.mark.asyncio
    async def test_update_file(self, router, github_options, logged_in) -> None:
        router.routes[("GET", "api.github.com/repos/foo/bar")] = repo_info()
        router.routes[("GET", CONTENTS)] = {"sha": "s1", "content": to_base64("{}")}
        router.routes[("PUT", CONTENTS)] = {"commit": {"sha": "c2"}}

        async with GithubFile(REPO, **github_options(commit_prefix="[bot] ")) as backend:
            result = await backend.store({"a": 2})

        assert result is not None and result.type == "update"
        body = json.loads(router.sent("PUT", CONTENTS)[0].content)
        assert body["sha"] == "s1"
        assert body["message"] == "[bot] Updated data.json"

    @pytest.mark.asyncio
    async def test_no_push_permission(self, router, github_options, logged_in) -> None:
        router.routes[("GET", "api.github.com/repos/foo/bar")] = repo_info(push=False)

        async with GithubFile(REPO, **github_options()) as backend:
            with pytest.raises(PermissionDeniedError, match="repository foo/bar"):
                await backend.store({"a": 1})
        assert router.sent("PUT", CONTENTS) == []

    @pytest.mark.asyncio
    async def test_missing_repo_is_created(self, router, github_options, logged_in) -> None:
        router.routes[("POST", "api.github.com/user/repos")] = lambda request: httpx.Response(
            201, json=repo_info()
        )
        router.routes[("PUT", CONTENTS)] = created

        async with GithubFile(REPO, **github_options()) as backend:
            result = await backend.store({"a": 1})
            assert backend.ref.repo_info == repo_info()

        assert result is not None and result.type == "create"
        assert json.loads(router.sent("POST", "api.github.com/user/repos")[0].content) == {
            "name": "bar",
            "private": False,
        }

    @pytest.mark.asyncio
    async def test_remove(self, router, github_options, logged_in) -> None:
        router.routes[("GET", "api.github.com/repos/foo/bar")] = repo_info()
        router.routes[("GET", CONTENTS)] = {"sha": "s1", "content": to_base64("{}")}
        router.routes[("DELETE", CONTENTS)] = {"commit": {"sha": "c3"}}

        async with GithubFile(REPO, **github_options()) as backend:
            result = await backend.remove()

        assert result is not None and result.type == "delete"
        body = json.loads(router.sent("DELETE", CONTENTS)[0].content)
        assert body == {"message": "Deleted data.json", "branch": "main", "sha": "s1"}

    @pytest.mark.asyncio
    async def test_upload(self, router, github_options, logged_in) -> None:
        target = "api.github.com/repos/foo/bar/contents/data/logo.png"
        router.routes[("GET", "api.github.com/repos/foo/bar")] = repo_info()
        router.routes[("PUT", target)] = created

        async with GithubFile(f"{REPO}/blob/main/data/data.json", **github_options()) as backend:
            url = await backend.upload(b"\x89PNG", "logo.png")

        assert url == "https://cdn.jsdelivr.net/gh/foo/bar@c1/data/logo.png"
        body = json.loads(router.sent("PUT", target)[0].content)
        assert body["content"] == base64.b64encode(b"\x89PNG").decode()

    @pytest.mark.asyncio
    async def test_file_url_prefers_pages(self, router, github_options, logged_in) -> None:
        router.routes[("GET", "api.github.com/repos/foo/bar")] = repo_info()
        router.routes[("GET", "api.github.com/repos/foo/bar/pages")] = {
            "html_url": "https://foo.github.io/bar/"
        }

        async with GithubFile(REPO, **github_options()) as backend:
            assert await backend.get_file_url("img/a.png") == "https://foo.github.io/bar/img/a.png"
            assert await backend.get_file_url() == "https://foo.github.io/bar/data.json"

        assert len(router.sent("GET", "api.github.com/repos/foo/bar/pages")) == 1


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_login_and_logout(self, github_options, github_user, window_host, storage) -> None:
        events = []

        async with GithubFile(REPO, **github_options()) as backend:
            await backend.ready()
            assert not backend.is_authenticated
            assert backend.permissions["login"]

            backend.on("login", lambda event: events.append(("login", event.detail.username)))
            backend.on("logout", lambda event: events.append(("logout", None)))

            user = await backend.login()

            assert user is not None and user.username == "foo"
            assert storage.get(TOKEN_KEY) == "tok-123"
            assert len(window_host.opened) == 1
            assert backend.permissions.as_dict() == {
                "read": True,
                "login": False,
                "logout": True,
                "edit": True,
                "save": True,
            }

            await backend.logout()

            assert TOKEN_KEY not in storage
            assert not backend.permissions["save"]
            assert backend.permissions["login"]

        assert events == [("login", "foo"), ("logout", None)]

    @pytest.mark.asyncio
    async def test_missing_owner_becomes_user(self, github_options, logged_in) -> None:
        async with GithubFile(**github_options()) as backend:
            await backend.ready()
            assert backend.ref.owner == "foo"
            assert backend.get_ref("https://github.com").owner == "foo"
            assert backend.get_ref("https://github.com/bar/baz").owner == "bar"

    @pytest.mark.asyncio
    async def test_stale_token_logs_out(self, router, github_options, logged_in, storage) -> None:
        router.routes[("GET", CONTENTS)] = lambda request: httpx.Response(
            401, json={"message": "Bad credentials"}
        )
        events = []

        async with GithubFile(REPO, **github_options()) as backend:
            await backend.ready()
            backend.on("logout", events.append)

            with pytest.raises(StaleTokenError):
                await backend.load()

            assert not backend.is_authenticated
            assert TOKEN_KEY not in storage
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_stored_token_rejected_on_startup(self, router, github_options, storage) -> None:
        storage.set(TOKEN_KEY, "expired")
        router.routes[("GET", "api.github.com/user")] = lambda request: httpx.Response(401)

        async with GithubFile(REPO, **github_options()) as backend:
            await backend.ready()
            assert not backend.is_authenticated
        assert TOKEN_KEY not in storage

    @pytest.mark.asyncio
    async def test_sync_with(self, router, github_options) -> None:
        router.routes[("GET", "api.github.com/user")] = {"login": "foo"}

        async with GithubFile(REPO, **github_options()) as first, GithubGist(
            "https://gist.github.com/foo/abc", **github_options(), sync_with=first
        ) as second:
            await second.ready()
            await first.login()
            await asyncio.gather(*second._background)
            assert second.is_authenticated

            await first.logout()
            await asyncio.gather(*second._background)
            assert not second.is_authenticated
