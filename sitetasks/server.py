"""Development server for sitetasks.

Serves the output directory with live reload:
- Injects a reload client script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Forwards live reload bus events to connected browsers over a WebSocket.

Key classes:
- DevServer: Runs the HTTP server, the WebSocket server and a TaskWatcher.
- _ReloadHandler: HTTP request handler that injects the reload script and enforces 404s.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import websockets

from .livereload import Event
from .logging_setup import get_logger
from .runner import TaskContext
from .watcher import TaskWatcher

logger = get_logger(__name__)


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects the live reload client into HTML pages.

    Attributes:
        reload_script: JavaScript connecting to the WebSocket server. ``css``
            messages refresh stylesheets in place, ``reload`` messages reload
            the page.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
        if (data.type === 'css') {{
          document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
            const url = new URL(link.href);
            url.searchParams.set('livereload', Date.now());
            link.href = url.toString();
          }});
        }}
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=3001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):  # noqa: A002 - signature from BaseHTTPRequestHandler
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, encoded: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, self._inject(error_page.read_text(encoding="utf-8")))
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
            self._send_html(200, self._inject(path_obj.read_text(encoding="utf-8")))
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload.

    The server subscribes to the context's live reload bus for as long as it
    runs; every bus event is broadcast as JSON to connected WebSocket clients.

    Attributes:
        ctx: Task context (configuration and bus).
        watcher: Watcher started and stopped together with the server.
        root: Directory served over HTTP.
        http_port: Port for the HTTP server.
        ws_port: Port for WebSocket connections.
    """

    def __init__(
        self,
        ctx: TaskContext,
        watcher: TaskWatcher | None = None,
        http_port: int | None = None,
        ws_port: int | None = None,
    ):
        """Initialize the development server.

        Args:
            ctx: Task context.
            watcher: Optional watcher to run alongside the server.
            http_port: Optional override for ``server.port``.
            ws_port: Optional override for ``server.ws_port``.
        """
        settings = ctx.config.get("server", {})
        self.ctx = ctx
        self.watcher = watcher
        self.root = ctx.path(settings.get("root", "public"))
        self.http_port = int(http_port or settings.get("port") or 3000)
        configured_ws = settings.get("ws_port")
        if ws_port is not None:
            self.ws_port = int(ws_port)
        elif configured_ws is not None and http_port is None:
            self.ws_port = int(configured_ws)
        else:
            self.ws_port = self.http_port + 1
        self._reload_script = _ReloadHandler.reload_script_template.format(
            ws_port=self.ws_port
        )
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._httpd: ThreadingHTTPServer | None = None

    def start(self) -> None:  # pragma: no cover - integration path
        self.root.mkdir(parents=True, exist_ok=True)
        self.ctx.bus.subscribe(self.on_event)
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        if self.watcher:
            self.watcher.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        self.ctx.bus.unsubscribe(self.on_event)
        if self.watcher:
            self.watcher.stop()
        if self._httpd:
            self._httpd.shutdown()
            self._httpd = None
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.root))
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at http://localhost:%s", self.root, self.http_port)
        self._httpd.serve_forever()

    def _start_ws(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("WebSocket server failed to start (port %s): %s", self.ws_port, exc)
            return

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()  # Run forever

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def on_event(self, event: Event) -> None:
        """Bus subscriber: forward an event to every browser."""
        if not self._loop.is_running():
            logger.debug(
                "WebSocket server not running; dropping %s event", event.get("type")
            )
            return
        message = json.dumps(self.client_message(event))
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    def client_message(self, event: Event) -> dict[str, Any]:
        """Translate a bus event into the message sent to browsers.

        File paths become URL paths relative to the served root; paths
        outside the root are dropped.
        """
        message: dict[str, Any] = {"type": event.get("type", "reload")}
        paths = list(event.get("paths", ()))
        if "path" in event:
            paths.append(event["path"])
        urls = []
        for raw in paths:
            try:
                rel = Path(raw).relative_to(self.root)
            except ValueError:
                continue
            urls.append("/" + rel.as_posix())
        if urls:
            message["paths"] = urls
        return message

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
