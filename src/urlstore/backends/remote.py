"""Read-only access to any URL."""

from __future__ import annotations

import base64
import logging
from pathlib import PurePosixPath
from typing import Any, Optional
from urllib.parse import unquote_to_bytes, urlsplit

from urlstore.backend import Backend, Ref
from urlstore.client import AsyncClient
from urlstore.config import resolve_settings
from urlstore.exceptions import FormatError, NotFoundError
from urlstore.formats import Format, formats

logger = logging.getLogger(__name__)


def decode_data_url(url: str) -> str:
    """Decode the payload of a ``data:`` URL as text.

    Raises:
        FormatError: If *url* is not a well-formed data URL.
    """
    header, sep, payload = url.partition(",")
    if not sep or not header.lower().startswith("data:"):
        raise FormatError(f"Malformed data URL: {url[:50]}")

    params = header[5:].split(";")
    charset = "utf-8"
    for param in params[1:]:
        if param.lower().startswith("charset="):
            charset = param.split("=", 1)[1]

    raw = unquote_to_bytes(payload)
    if params[-1].lower() == "base64":
        try:
            raw = base64.b64decode(raw)
        except ValueError as exc:
            raise FormatError(f"Invalid base64 in data URL: {exc}") from exc
    return raw.decode(charset)


def guess_format(url: Optional[str]) -> Optional[type[Format]]:
    """Format suggested by a data URL's media type or a URL's file extension."""
    if not url:
        return None
    if url.lower().startswith("data:"):
        media_type = url[5:].partition(",")[0].split(";")[0]
        return formats.find(mime_type=media_type) if media_type else None
    suffix = PurePosixPath(urlsplit(url).path).suffix
    return formats.find(extension=suffix) if suffix else None


class Remote(Backend):
    """Plain GET of the source URL; nothing can be saved.

    Never selected by URL matching. The registry falls back to it when no
    other backend handles a URL, or it can be requested with ``type="Remote"``.
    """

    name = "Remote"
    title = "Remote URL (read-only)"

    def __init__(self, url: Optional[str] = None, **options: Any) -> None:
        super().__init__(url, **options)
        settings = options.get("settings") or resolve_settings()
        self.client = AsyncClient(
            config=settings.request,
            use_cache=self.use_cache,
            transport=options.get("transport"),
            headers={},
            name=self.name,
        )
        self.update_permissions(read=True)

    @property
    def format(self) -> Format:
        """The ``format`` option, else a guess from the URL, else JSON."""
        if self.options.get("format") is None:
            guessed = guess_format(self.source)
            if guessed is not None:
                return guessed()
        return super().format

    @classmethod
    def test(cls, url: Optional[str], options: Optional[dict[str, Any]] = None) -> bool:
        return False

    async def get(self, ref: Ref, **options: Any) -> Optional[str]:
        if not ref.url:
            return None
        if ref.url.lower().startswith("data:"):
            return decode_data_url(ref.url)
        try:
            return await self.client.request(ref.url, response_type="text")
        except NotFoundError:
            logger.debug("%s not found", ref.url)
            return None

    async def aclose(self) -> None:
        await self.client.aclose()
