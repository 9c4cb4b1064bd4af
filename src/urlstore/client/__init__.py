"""HTTP request pipeline for urlstore backends.

:class:`AsyncClient` wraps :class:`httpx.AsyncClient` with bearer token
injection, query/body shaping, cache busting, retry with exponential backoff,
and typed error mapping.

Example::

    from urlstore.client import AsyncClient

    async with AsyncClient("https://api.github.com/", token="...") as client:
        repos = await client.request("user/repos", {"per_page": 100})
"""

from urlstore.client.async_client import AsyncClient
from urlstore.client.response import extract_response_data

__all__ = ["AsyncClient", "extract_response_data"]
