"""Shared GitHub provider and base class."""

from __future__ import annotations

from typing import Any, Optional

from urlstore.auth.provider import OAuthProvider
from urlstore.backend import OAuthBackend
from urlstore.models import User

GITHUB = OAuthProvider(
    name="Github",
    authorize_url="https://github.com/login/oauth/authorize",
    api_domain="https://api.github.com/",
)

PREVIEW_ACCEPT = {"Accept": "application/vnd.github.squirrel-girl-preview"}


class Github(OAuthBackend):
    """Base for GitHub adapters. Not registered itself; all subclasses share one token."""

    name = "Github"
    provider = GITHUB

    def __init__(self, url: Optional[str] = None, **options: Any) -> None:
        super().__init__(url, **options)
        self.update_permissions(read=True)

    def oauth_params(self) -> dict[str, str]:
        return {"scope": "user repo"}

    async def get_user(self) -> User:
        if self.user is not None:
            return self.user

        info = await self.request("user")
        login = info["login"]
        return User.model_validate(
            {
                **info,
                "username": login,
                "name": info.get("name") or login,
                "avatar": info.get("avatar_url"),
                "url": f"https://github.com/{login}",
            }
        )

    def _on_login(self, user: User) -> None:
        super()._on_login(user)
        if self.supports("write"):
            self.update_permissions(edit=True, save=True)
