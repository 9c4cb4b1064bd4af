"""Asynchronous request pipeline shared by every HTTP backend.

:class:`AsyncClient` wraps :class:`httpx.AsyncClient` and applies the
conventions service APIs expect from a data-store client:

* a JSON ``Content-Type`` header and a ``Bearer`` token when one is available,
* endpoints resolved against the backend's API domain,
* mapping bodies turned into query parameters for ``GET``/``HEAD`` and into
  JSON for everything else,
* a ``timestamp`` query parameter on ``GET`` to defeat intermediate caches,
* retry with exponential backoff for idempotent requests,
* typed exceptions for non-2xx responses and network failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Literal, Mapping, Optional, Union

import httpx

from urlstore.client.response import extract_response_data, response_message
from urlstore.exceptions import (
    ConnectionError_,
    NotFoundError,
    ResponseError,
    ServerError,
    UnauthorizedError,
)
from urlstore.models import RequestConfig
from urlstore.phrases import phrase

logger = logging.getLogger(__name__)

ResponseType = Literal["json", "text", "bytes", "response"]
TokenSource = Union[str, Callable[[], Optional[str]], None]

DEFAULT_HEADERS = {"Content-Type": "application/json; charset=utf-8"}
_IDEMPOTENT = ("GET", "HEAD")


class AsyncClient:
    """HTTP client for service APIs.

    The underlying :class:`httpx.AsyncClient` is opened lazily on the first
    request and closed by :meth:`aclose` or by leaving an ``async with``
    block.

    Args:
        api_domain: Base URL relative endpoints are resolved against.
        token: Access token, or a callable returning the current one.
        config: Timeout, SSL verification and retry settings.
        use_cache: When ``False``, ``GET`` requests carry no cache-busting
            ``timestamp`` parameter.
        transport: Optional httpx transport (tests use
            :class:`httpx.MockTransport`).
        headers: Headers sent with every request.
        name: Service name used in error messages.

    Example::

        async with AsyncClient("https://api.github.com/", token=lambda: tok) as client:
            user = await client.request("user")
    """

    def __init__(
        self,
        api_domain: Optional[str] = None,
        token: TokenSource = None,
        config: Optional[RequestConfig] = None,
        use_cache: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Mapping[str, str]] = None,
        name: str = "the server",
    ) -> None:
        self.api_domain = api_domain
        self._token = token
        self.config = config or RequestConfig()
        self.use_cache = use_cache
        self._transport = transport
        self._headers = dict(headers or {})
        self.name = name
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AsyncClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    # ------------------------------------------------------------------ #
    # Public request method
    # ------------------------------------------------------------------ #

    async def request(
        self,
        endpoint: str,
        body: Any = None,
        method: str = "GET",
        *,
        response_type: ResponseType = "json",
        headers: Optional[Mapping[str, str]] = None,
        use_cache: Optional[bool] = None,
    ) -> Any:
        """Send a request and decode the response.

        Args:
            endpoint: Absolute URL, or a path resolved against ``api_domain``.
            body: Query parameters (``GET``/``HEAD``) or request body.
                ``None`` values in a query mapping remove that parameter.
            method: HTTP method.
            response_type: How to decode a 2xx body: ``"json"`` (empty body
                gives ``None``), ``"text"``, ``"bytes"``, or ``"response"``
                for the raw :class:`httpx.Response`.
            headers: Extra headers, overriding the defaults.
            use_cache: Per-request override of ``use_cache``.

        Returns:
            The decoded body. ``HEAD`` requests return the raw response.

        Raises:
            UnauthorizedError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On 5xx after all retries are exhausted.
            ResponseError: On any other non-2xx status.
            ConnectionError_: On network / timeout errors after all retries.
        """
        method = method.upper()
        url = httpx.URL(self.resolve(endpoint))

        merged_headers: dict[str, str] = {**DEFAULT_HEADERS, **self._headers, **(headers or {})}
        if not any(key.lower() == "authorization" for key in merged_headers):
            token = self._current_token()
            if token:
                merged_headers["Authorization"] = f"Bearer {token}"

        cache = self.use_cache if use_cache is None else use_cache
        if method == "GET" and cache is not False:
            url = url.copy_set_param("timestamp", str(int(time.time() * 1000)))

        kwargs: dict[str, Any] = {}
        if method in _IDEMPOTENT:
            if isinstance(body, Mapping):
                for key, value in body.items():
                    if value is None:
                        url = url.copy_remove_param(key)
                    else:
                        url = url.copy_set_param(key, _query_value(value))
        elif isinstance(body, (Mapping, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = body

        response = await self._execute_with_retry(method, url, merged_headers, kwargs)
        self._map_response_error(response)

        if method == "HEAD" or response_type == "response":
            return response
        return extract_response_data(response, response_type)

    def resolve(self, endpoint: str) -> str:
        """Resolve *endpoint* against ``api_domain``; absolute URLs pass through."""
        if self.api_domain is None:
            return endpoint
        return str(httpx.URL(self.api_domain).join(endpoint))

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _current_token(self) -> Optional[str]:
        if callable(self._token):
            return self._token()
        return self._token

    async def _execute_with_retry(
        self,
        method: str,
        url: httpx.URL,
        headers: dict[str, str],
        kwargs: dict[str, Any],
    ) -> httpx.Response:
        """Execute the request, retrying idempotent methods.

        ``GET``/``HEAD`` are retried on 5xx responses and on connection /
        timeout errors, up to ``max_retries`` times. The delay doubles each
        attempt: 1 s, 2 s, 4 s, ...
        """
        client = self._ensure_client()
        max_retries = self.config.max_retries if method in _IDEMPOTENT else 0

        for attempt in range(max_retries + 1):
            try:
                response = await client.request(method, url, headers=headers, **kwargs)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.debug(
                        "Connection error: %s, retrying in %ss (attempt %d/%d)",
                        exc, delay, attempt + 1, max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ConnectionError_(
                    phrase(self, "something_went_wrong_while_connecting", self.name)
                ) from exc
            except httpx.HTTPError as exc:
                raise ConnectionError_(
                    phrase(self, "something_went_wrong_while_connecting", self.name)
                ) from exc

            if response.status_code >= 500 and attempt < max_retries:
                delay = 2 ** attempt
                logger.debug(
                    "Server error %d, retrying in %ss (attempt %d/%d)",
                    response.status_code, delay, attempt + 1, max_retries,
                )
                await asyncio.sleep(delay)
                continue

            return response

        raise AssertionError("unreachable")  # pragma: no cover

    def _map_response_error(self, response: httpx.Response) -> None:
        """Raise a typed exception for non-2xx status codes."""
        status = response.status_code
        if 200 <= status < 300:
            return

        msg = response_message(response)
        full_msg = f"HTTP {status}: {msg}" if msg else f"HTTP {status}"

        error_cls: type[ResponseError]
        if status in (401, 403):
            error_cls = UnauthorizedError
        elif status == 404:
            error_cls = NotFoundError
        elif status >= 500:
            error_cls = ServerError
        else:
            error_cls = ResponseError
        raise error_cls(full_msg, status=status, response=response)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
