"""Response decoding helpers for :class:`~urlstore.client.AsyncClient`."""

from __future__ import annotations

from typing import Any

import httpx

from urlstore.exceptions import FormatError


def extract_response_data(response: httpx.Response, response_type: str = "json") -> Any:
    """Decode the body of a successful response.

    Args:
        response: The :class:`httpx.Response` to decode.
        response_type: ``"json"``, ``"text"`` or ``"bytes"``.

    Returns:
        The decoded body. An empty body decodes to ``None`` for ``"json"``.

    Raises:
        FormatError: If a ``"json"`` body is not valid JSON.
    """
    if response_type == "bytes":
        return response.content
    if response_type == "text":
        return response.text

    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise FormatError(f"Invalid JSON in response from {response.request.url}: {exc}") from exc


def response_message(response: httpx.Response) -> str:
    """Best-effort error message from an error response body."""
    try:
        detail = response.json()
        if isinstance(detail, dict):
            return str(detail.get("message") or detail.get("error") or detail.get("detail") or "")
        return str(detail)
    except ValueError:
        return response.text[:200] if response.text else ""
