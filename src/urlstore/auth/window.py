"""Window host abstraction for the login popup handshake.

The login flow needs three things from its environment: somewhere to open
the provider's authorize page, the geometry used to size that window, and a
channel over which the window reports back. :class:`WindowHost` captures
that contract; :class:`~urlstore.auth.session.AuthSession` only talks to it.

:class:`LoopbackWindowHost` is the desktop implementation. It serves a
callback page on ``127.0.0.1`` from a daemon thread, opens the authorize URL
with :mod:`webbrowser`, and turns each callback request into a
:class:`WindowMessage` delivered on the event loop. Every window has its
own callback path, so a request is only ever attributed to the window it
was addressed to. The auth relay returns either as query parameters
(``?backend=github&token=...``) or as a URL fragment, which the served
relay page posts back as JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import threading
import webbrowser
from abc import ABC, abstractmethod
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, parse_qsl, urlencode, urlparse, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

MessageListener = Callable[["WindowMessage"], Any]


@dataclass
class WindowMessage:
    """A message received from another window.

    Attributes:
        source: The window that sent the message. Listeners compare it by
            identity against the popup they opened.
        data: The message payload, unvalidated.
    """

    source: Any
    data: Any


class PopupWindow(ABC):
    """Handle to an opened window."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class WindowHost(ABC):
    """The environment a login popup is opened from."""

    def __init__(self) -> None:
        self._message_listeners: list[MessageListener] = []

    @property
    @abstractmethod
    def location(self) -> str:
        """URL of the current page, sent as ``state.url`` to the relay."""

    @property
    def inner_size(self) -> tuple[int, int]:
        return (1280, 800)

    @property
    def screen_size(self) -> tuple[int, int]:
        return (1920, 1080)

    @abstractmethod
    def open(self, url: str, name: str, features: str) -> Optional[PopupWindow]:
        """Open *url* in a new window; ``None`` means the popup was blocked."""

    def add_message_listener(self, listener: MessageListener) -> None:
        if listener not in self._message_listeners:
            self._message_listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def post_message(self, message: WindowMessage) -> None:
        """Deliver *message* to every registered listener."""
        for listener in list(self._message_listeners):
            listener(message)


# --- Loopback implementation ---

_RELAY_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>urlstore login</title></head>
<body>
<h2 id="status">Completing login&hellip;</h2>
<script>
const fragment = location.hash.slice(1);
let data = {};
try {
    data = JSON.parse(decodeURIComponent(fragment));
} catch (e) {
    data = Object.fromEntries(new URLSearchParams(fragment));
}
fetch(location.pathname, {
    method: "POST",
    headers: {"Content-Type": "application/json"},
    body: JSON.stringify(data),
}).then(() => {
    document.getElementById("status").textContent =
        "Login complete. You can close this window and return to the terminal.";
});
</script>
</body>
</html>
"""

_DONE_PAGE = (
    "<html><body><h2>Login complete. You can close this window "
    "and return to the terminal.</h2></body></html>"
)

_UNKNOWN_PAGE = "<html><body><h2>This login window is no longer open.</h2></body></html>"


class LoopbackPopup(PopupWindow):
    """A browser tab opened by :class:`LoopbackWindowHost`.

    The tab itself cannot be observed; it counts as closed once the host is
    told to close it. Only requests to :attr:`callback_url` are delivered as
    messages from this popup.
    """

    def __init__(
        self,
        host: "LoopbackWindowHost",
        url: str,
        nonce: str,
        callback_url: str,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._host = host
        self.url = url
        self.nonce = nonce
        self.callback_url = callback_url
        self.loop = loop
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._host._popup_closed(self)


class LoopbackWindowHost(WindowHost):
    """Open login windows in the system browser and receive callbacks locally.

    Each opened window gets a callback path of its own (``/<nonce>/``), and
    the ``url`` in the authorize URL's ``state`` is pointed at it. Callbacks
    on any other path are answered with 404 and never reach a listener. The
    server stops once the last open window is closed.

    Args:
        host: Interface for the callback server.
        port: Port for the callback server; ``0`` picks a free port.
        open_browser: Callable used to open URLs, returning ``False`` when no
            browser could be opened. Defaults to :func:`webbrowser.open`.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        open_browser: Optional[Callable[[str], bool]] = None,
    ) -> None:
        super().__init__()
        self._host = host
        self._port = port
        self._open_browser = open_browser or webbrowser.open
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._popups: dict[str, LoopbackPopup] = {}
        self._lock = threading.Lock()

    @property
    def location(self) -> str:
        server = self._ensure_server()
        host, port = server.server_address[:2]
        return f"http://{host}:{port}/"

    def open(self, url: str, name: str, features: str) -> Optional[PopupWindow]:
        loop = asyncio.get_running_loop()
        self._ensure_server()

        nonce = secrets.token_urlsafe(16)
        popup = LoopbackPopup(self, url, nonce, f"{self.location}{nonce}/", loop)
        popup.url = self._route_state(url, popup.callback_url)

        logger.debug("Opening login window %s (%s)", name, features)
        with self._lock:
            self._popups[nonce] = popup
        if not self._open_browser(popup.url):
            logger.debug("No browser available to open %s", popup.url)
            with self._lock:
                self._popups.pop(nonce, None)
            return None
        return popup

    def shutdown(self) -> None:
        """Stop the callback server."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            self._thread = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_server(self) -> ThreadingHTTPServer:
        if self._server is None:
            self._server = ThreadingHTTPServer((self._host, self._port), self._handler_class())
            self._thread = threading.Thread(
                target=self._server.serve_forever, name="urlstore-login-callback", daemon=True
            )
            self._thread.start()
            logger.debug("Login callback server listening on %s", self._server.server_address)
        return self._server

    def _route_state(self, url: str, callback_url: str) -> str:
        """Point the ``state.url`` of an authorize *url* at *callback_url*."""
        parts = urlsplit(url)
        params = parse_qsl(parts.query, keep_blank_values=True)
        routed = False
        for i, (key, value) in enumerate(params):
            if key != "state":
                continue
            try:
                state = json.loads(value)
            except json.JSONDecodeError:
                continue
            if isinstance(state, dict) and state.get("url") == self.location:
                state["url"] = callback_url
                params[i] = (key, json.dumps(state, separators=(",", ":")))
                routed = True
        if not routed:
            return url
        return urlunsplit(parts._replace(query=urlencode(params)))

    def _popup_closed(self, popup: LoopbackPopup) -> None:
        with self._lock:
            if self._popups.get(popup.nonce) is popup:
                del self._popups[popup.nonce]
            idle = not self._popups
        if idle:
            self.shutdown()

    def _deliver(self, nonce: str, data: Any) -> bool:
        """Hand a callback payload to the event loop (called from the server thread).

        Returns:
            Whether *nonce* belongs to an open window.
        """
        with self._lock:
            popup = self._popups.get(nonce)
        if popup is None or popup.closed or popup.loop.is_closed():
            logger.debug("Ignoring login callback for no open window")
            return False
        popup.loop.call_soon_threadsafe(self.post_message, WindowMessage(source=popup, data=data))
        return True

    def _handler_class(self) -> type[BaseHTTPRequestHandler]:
        host = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                url = urlparse(self.path)
                params = parse_qs(url.query)
                if not params:
                    self._respond(200, _RELAY_PAGE)
                    return
                data = {key: values[0] for key, values in params.items()}
                if host._deliver(url.path.strip("/"), data):
                    self._respond(200, _DONE_PAGE)
                else:
                    self._respond(404, _UNKNOWN_PAGE)

            def do_POST(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                raw = self.rfile.read(length) if length else b""
                try:
                    data = json.loads(raw.decode("utf-8") or "null")
                except (UnicodeDecodeError, json.JSONDecodeError):
                    data = None
                delivered = host._deliver(urlparse(self.path).path.strip("/"), data)
                self.send_response(204 if delivered else 404)
                self.end_headers()

            def _respond(self, status: int, body: str) -> None:
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(body.encode("utf-8"))

            def log_message(self, format: str, *args: Any) -> None:
                pass

        return CallbackHandler


_default_host: Optional[WindowHost] = None


def get_default_window_host() -> WindowHost:
    """Return the shared :class:`LoopbackWindowHost`."""
    global _default_host
    if _default_host is None:
        _default_host = LoopbackWindowHost()
    return _default_host
