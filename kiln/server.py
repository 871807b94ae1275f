"""Development server for Kiln.

Serves the output tree over HTTP and pushes rebuild notifications to
browsers over a websocket:

- Injects a live-reload client into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- After each build, sends a stylesheet hot-swap when only style bundles
  changed, or a full reload otherwise. Build errors travel with the reload
  and are shown in an overlay until a clean build.

Key classes:
- DevServer: HTTP and websocket servers on background threads.
- LiveReloadHub: Tracks browser connections and broadcasts messages.
- _ReloadHandler: HTTP request handler that injects the client and enforces 404s.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import json
import logging
import threading
from dataclasses import dataclass, field
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from itertools import count
from pathlib import Path
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from .report import BuildReport

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


_ids = count(1)


@dataclass(eq=False)
class LiveConnection:
    websocket: Any
    id: int = field(default_factory=lambda: next(_ids))
    state: ConnectionState = ConnectionState.CONNECTING


def output_url(rel: str) -> str:
    """Public URL path of an output file."""
    if rel == "index.html":
        return "/"
    if rel.endswith("/index.html"):
        return "/" + rel[: -len("index.html")]
    return "/" + rel


def plan_notification(report: BuildReport, errors: list[str] | None = None) -> dict[str, Any] | None:
    """Decide what to tell connected browsers about a finished build.

    Args:
        report: The finished run.
        errors: Every error still outstanding for the site; defaults to the
            errors of this run alone.

    Returns:
        None when no output changed and nothing is failing; a ``css``
        message when every changed output is a style bundle and nothing is
        failing; otherwise a ``reload`` message carrying the errors.
    """
    if errors is None:
        errors = report.errors()
    changed = report.changed_outputs
    if not changed and not errors:
        return None
    paths = [output_url(p) for p in changed]
    styles = set(report.style_outputs)
    if changed and not errors and all(p in styles for p in changed):
        return {"type": "css", "paths": paths}
    return {"type": "reload", "paths": paths, "errors": errors}


def _log_broadcast_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("live reload broadcast failed: %r", exc)


class LiveReloadHub:
    """Browser connections and the messages sent to them.

    All coroutines run on the websocket server's event loop; ``errors``
    may be replaced from any thread.
    """

    def __init__(self) -> None:
        self.connections: set[LiveConnection] = set()
        self._errors: list[str] = []
        self._lock = threading.Lock()

    @property
    def errors(self) -> list[str]:
        with self._lock:
            return list(self._errors)

    @errors.setter
    def errors(self, value: list[str]) -> None:
        with self._lock:
            self._errors = list(value)

    def open_connections(self) -> list[LiveConnection]:
        return [c for c in self.connections if c.state is ConnectionState.OPEN]

    async def handler(self, websocket) -> None:
        conn = LiveConnection(websocket)
        self.connections.add(conn)
        try:
            await websocket.send(json.dumps({"type": "errors", "errors": self.errors}))
            conn.state = ConnectionState.OPEN
            await websocket.wait_closed()
        except (ConnectionClosed, OSError):
            pass
        finally:
            conn.state = ConnectionState.CLOSED
            self.connections.discard(conn)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send a message to every open connection.

        Connections that fail are closed and dropped; browsers reconnect on
        their own after the next navigation.

        Returns:
            Number of connections the message reached.
        """
        payload = json.dumps(message)
        sent = 0
        for conn in self.open_connections():
            try:
                await conn.websocket.send(payload)
                sent += 1
            except (ConnectionClosed, OSError) as exc:
                logger.debug("dropping live-reload connection %d: %s", conn.id, exc)
                conn.state = ConnectionState.CLOSED
                self.connections.discard(conn)
        return sent


RELOAD_SCRIPT_TEMPLATE = """
<script data-kiln-reload>
(() => {{
  const overlayId = 'kiln-error-overlay';
  function dismiss() {{
    const old = document.getElementById(overlayId);
    if (old) old.remove();
  }}
  function show(errors) {{
    dismiss();
    if (!errors || !errors.length) return;
    const el = document.createElement('div');
    el.id = overlayId;
    el.style.cssText = 'position:fixed;inset:auto 1rem 1rem 1rem;max-height:50vh;overflow:auto;'
      + 'background:#2d1010;border:1px solid #e74c3c;border-radius:8px;padding:1rem;'
      + 'font:0.85rem/1.5 ui-monospace,monospace;color:#f0a0a0;z-index:99999;white-space:pre-wrap';
    el.textContent = 'Build failed\\n\\n' + errors.join('\\n');
    el.onclick = dismiss;
    document.body.appendChild(el);
  }}
  function swapStyles(paths) {{
    document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
      const url = new URL(link.href, location.href);
      if (url.origin !== location.origin || !paths.includes(url.pathname)) return;
      url.searchParams.set('kiln', Date.now());
      link.href = url.toString();
    }});
  }}
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'css') {{ swapStyles(data.paths || []); dismiss(); }}
    else if (data.type === 'reload') location.reload();
    else if (data.type === 'errors') show(data.errors);
  }};
}})();
</script>
"""


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects the live-reload client into HTML pages.

    Attributes:
        reload_script: Client script; bound to the websocket port per server.
    """

    reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>", 1)
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, content: str) -> None:
        encoded = self._inject(content)
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with the injected client and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """HTTP server for the output tree plus the live-reload websocket.

    Attributes:
        output_dir: Directory served.
        host: Bind address.
        port: HTTP port.
        ws_port: Websocket port; defaults to ``port + 1``.
        hub: Live-reload connection hub.
    """

    def __init__(
        self,
        output_dir: Path,
        host: str = "127.0.0.1",
        port: int = 4000,
        ws_port: int | None = None,
    ):
        self.output_dir = output_dir
        self.host = host
        self.port = port
        self.ws_port = ws_port or port + 1
        self.hub = LiveReloadHub()
        self._httpd: ThreadingHTTPServer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws_stop: asyncio.Future | None = None
        self._ws_ready = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:  # pragma: no cover - integration path
        self.output_dir.mkdir(parents=True, exist_ok=True)
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": RELOAD_SCRIPT_TEMPLATE.format(ws_port=self.ws_port)},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
        self._threads = [
            threading.Thread(target=self._httpd.serve_forever, name="kiln-http", daemon=True),
            threading.Thread(target=self._run_ws, name="kiln-ws", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        self._ws_ready.wait(timeout=5)
        logger.info("Serving %s at http://%s:%d", self.output_dir, self.host, self.port)

    def _run_ws(self) -> None:  # pragma: no cover - integration path
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._serve_ws())
        except OSError as exc:
            logger.error("Live reload failed to start (port %d): %s", self.ws_port, exc)
        finally:
            self._ws_ready.set()
            self._loop.close()

    async def _serve_ws(self) -> None:  # pragma: no cover - integration path
        self._ws_stop = asyncio.get_running_loop().create_future()
        async with websockets.serve(self.hub.handler, self.host, self.ws_port):
            self._ws_ready.set()
            await self._ws_stop

    def stop(self) -> None:  # pragma: no cover - integration path
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        loop, stop = self._loop, self._ws_stop
        if loop is not None and stop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(lambda: stop.done() or stop.set_result(None))
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []

    def notify(self, report: BuildReport, errors: list[str] | None = None) -> dict[str, Any] | None:
        """Push the outcome of a build to connected browsers.

        Args:
            report: The finished run.
            errors: Errors still outstanding for the site, which the overlay
                keeps showing; defaults to the errors of this run.

        Returns:
            The message sent, or None if the build changed nothing.
        """
        if errors is None:
            errors = report.errors()
        self.hub.errors = errors
        message = plan_notification(report, errors)
        if message is None:
            return None
        loop = self._loop
        if loop is not None and loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self.hub.broadcast(message), loop)
            future.add_done_callback(_log_broadcast_failure)
        logger.debug("live reload: %s %s", message["type"], message.get("paths"))
        return message
