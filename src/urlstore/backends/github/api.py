"""Raw GitHub REST and GraphQL calls as a data source.

* ``https://api.github.com/graphql#<query>`` runs a GraphQL query and returns
  its ``data``.
* ``https://api.github.com/<call>`` returns the JSON of a REST call. A
  ``max_pages`` query parameter follows ``Link: rel="next"`` headers and
  concatenates list results.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from urlstore.backend import Ref
from urlstore.backends.github.base import PREVIEW_ACCEPT, Github
from urlstore.exceptions import BackendError, NotFoundError, ResponseError
from urlstore.urls import match_urls

logger = logging.getLogger(__name__)

_HASH = re.compile(r"#([\S\s]+)")
_NEXT_LINK = re.compile(r'<(.+?)>; rel="next"')


@dataclass
class GithubAPIRef(Ref):
    api_call: Optional[str] = None
    query: Optional[str] = None


class GithubAPI(Github):
    name = "GithubAPI"
    title = "GitHub API"
    # GraphQL first: every other api.github.com path is a REST call
    urls = (
        {"hostname": "api.github.com", "pathname": "/graphql", "hash": ":query?"},
        {"hostname": "api.github.com", "pathname": "/:api_call(.+)"},
    )
    ref_type = GithubAPIRef

    @classmethod
    def parse_url(cls, source: Optional[str]) -> GithubAPIRef:
        match = match_urls(source, cls.urls)
        if source is None or match is None:
            return GithubAPIRef(url=source)

        api_call = match.groups.get("api_call")
        if api_call:
            query_string = urlsplit(source).query
            if query_string:
                api_call = f"{api_call}?{query_string}"
            return GithubAPIRef(url=source, api_call=api_call)

        # Fragments lose line breaks when parsed, so read the query from the source
        hash_match = _HASH.search(source)
        query = hash_match.group(1) if hash_match else None
        return GithubAPIRef(url=source.split("#", 1)[0], query=query)

    async def get(self, ref: Ref, **options: Any) -> Any:
        assert isinstance(ref, GithubAPIRef)
        if ref.query:
            return await self._graphql(ref)
        if ref.api_call:
            return await self._rest(ref.api_call)
        return None

    async def _graphql(self, ref: GithubAPIRef) -> Any:
        response = await self.request(ref.url or "graphql", {"query": ref.query}, "POST")
        errors = (response or {}).get("errors")
        if errors:
            raise BackendError("\n".join(error.get("message", "") for error in errors))
        return (response or {}).get("data")

    async def _rest(self, api_call: str) -> Any:
        try:
            response = await self.request(
                api_call, None, "GET", response_type="response", headers=PREVIEW_ACCEPT
            )
        except NotFoundError:
            return None

        data = response.json() if response.content else None

        params = parse_qs(urlsplit(api_call).query)
        try:
            max_pages = int(params.get("max_pages", ["1"])[0]) - 1
        except ValueError:
            max_pages = 0

        if max_pages > 0 and "page" not in params and isinstance(data, list):
            while max_pages > 0:
                link = _NEXT_LINK.search(response.headers.get("Link", ""))
                if link is None:
                    break
                try:
                    response = await self.request(
                        link.group(1), None, "GET", response_type="response", headers=PREVIEW_ACCEPT
                    )
                except ResponseError as exc:
                    logger.debug("Stopped paginating %s: %s", api_call, exc)
                    break
                page = response.json() if response.content else None
                if not isinstance(page, list):
                    break
                data.extend(page)
                max_pages -= 1

        return data
