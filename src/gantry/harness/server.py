from __future__ import annotations

import signal
import ssl
import threading
from collections.abc import Callable, Sequence
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

import httpx

from gantry.context import AppContext
from gantry.errors import ProcessStartError, ToolchainMissingError
from gantry.harness.error_page import render_error_page
from gantry.harness.proxy import dial_backend, forward, is_websocket_upgrade, read_body, tunnel
from gantry.logging import get_logger
from gantry.pipeline import BuildResult, resolve_python, run_build
from gantry.schemas import CompileError, ErrorKind
from gantry.supervisor import App
from gantry.utils import free_port
from gantry.watch.service import ChangeWatcher

logger = get_logger("harness")

LOOPBACK = "127.0.0.1"
WILDCARD_HOSTS = {"", "0.0.0.0", "::"}


class HarnessServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], harness: Harness) -> None:
        self.harness = harness
        super().__init__(address, HarnessRequestHandler)


class HarnessRequestHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    server: HarnessServer

    def _handle(self) -> None:
        self.server.harness.handle(self)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = do_HEAD = do_OPTIONS = _handle

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class Harness:
    """Reverse proxy in front of the application that rebuilds it on change.

    Every request first asks the watcher whether the sources changed; a failed
    build is answered with an error page instead of being forwarded.
    """

    def __init__(
        self,
        context: AppContext,
        build: Callable[[AppContext, Sequence[str]], BuildResult] = run_build,
        build_flags: Sequence[str] = (),
    ) -> None:
        self.context = context
        self.build = build
        self.build_flags = tuple(build_flags)
        self.app: App | None = None

        http = context.config.http
        self.use_tls = http.ssl
        self.backend_host = LOOPBACK if http.addr in WILDCARD_HOSTS else http.addr
        self.port = context.config.harness_port or free_port()
        scheme = "https" if self.use_tls else "http"
        self.client = httpx.Client(
            base_url=f"{scheme}://{self.backend_host}:{self.port}",
            verify=not self.use_tls,
            follow_redirects=False,
            timeout=httpx.Timeout(60.0, connect=5.0),
        )
        self.watcher = ChangeWatcher(context.code_paths, self.refresh)
        self.last_request_had_error = False
        self.fatal: BaseException | None = None
        self._stop = threading.Event()

    def refresh(self) -> CompileError | None:
        """Kill the running app, rebuild it and start the new binary.

        Nothing is built or started once shutdown has begun.
        """
        if self.app is not None:
            self.app.kill()
            self.app = None
        if self._stop.is_set():
            return None

        try:
            result = self.build(self.context, self.build_flags)
        except OSError as exc:
            logger.error("Build failed: %s", exc)
            return CompileError(kind=ErrorKind.INTERNAL, title="Build failed", description=str(exc))
        if result.error is not None:
            logger.error("Build failed: %s", result.error)
            return result.error
        if result.app is None or self._stop.is_set():
            return None

        app = result.app
        app.host = self.backend_host
        try:
            app.start(self.port, timeout=self.context.config.start_timeout)
        except ProcessStartError as exc:
            logger.error("App failed to start: %s", exc)
            return CompileError(
                kind=ErrorKind.PROCESS_START,
                title="App failed to start up",
                description=str(exc),
            )
        self.app = app
        return None

    def handle(self, handler: BaseHTTPRequestHandler) -> None:
        path = urlsplit(handler.path).path
        if self.last_request_had_error and path == "/favicon.ico":
            self._send(handler, 204, b"", "text/plain")
            return

        try:
            error = self.watcher.notify()
        except ToolchainMissingError as exc:
            logger.critical("%s", exc)
            self.fatal = exc
            self._stop.set()
            self._send(handler, 500, f"{exc}\n".encode(), "text/plain; charset=utf-8")
            return

        if error is not None:
            self.last_request_had_error = True
            page = render_error_page(error)
            self._send(handler, 500, page.encode("utf-8"), "text/html; charset=utf-8")
            return
        self.last_request_had_error = False

        if is_websocket_upgrade(handler.headers):
            self._proxy_websocket(handler)
        else:
            self._proxy_http(handler)

    def _send(self, handler: BaseHTTPRequestHandler, status: int, body: bytes, content_type: str) -> None:
        handler.send_response(status)
        handler.send_header("Content-Type", content_type)
        handler.send_header("Content-Length", str(len(body)))
        # The request body may still be unread.
        handler.send_header("Connection", "close")
        handler.close_connection = True
        handler.end_headers()
        if handler.command != "HEAD" and body:
            handler.wfile.write(body)

    def _proxy_http(self, handler: BaseHTTPRequestHandler) -> None:
        body = read_body(handler.headers, handler.rfile)
        try:
            response = forward(
                self.client,
                handler.command,
                handler.path,
                handler.headers,
                body,
                handler.client_address[0],
            )
        except httpx.HTTPError as exc:
            logger.error("Proxy error: %s", exc)
            self._send(handler, 502, b"Bad Gateway\n", "text/plain; charset=utf-8")
            return

        handler.send_response_only(response.status_code, response.reason)
        for key, value in response.headers:
            handler.send_header(key, value)
        bodiless = response.status_code < 200 or response.status_code in (204, 304)
        if handler.command == "HEAD":
            if response.content_length is not None and not bodiless:
                handler.send_header("Content-Length", response.content_length)
        elif not bodiless:
            handler.send_header("Content-Length", str(len(response.content)))
        handler.end_headers()
        if handler.command != "HEAD" and not bodiless:
            handler.wfile.write(response.content)

    def _proxy_websocket(self, handler: BaseHTTPRequestHandler) -> None:
        try:
            backend = dial_backend(self.backend_host, self.port, self.use_tls)
        except OSError as exc:
            logger.error("Error dialing websocket backend %s:%d: %s", self.backend_host, self.port, exc)
            self._send(handler, 502, b"Error contacting backend server.\n", "text/plain; charset=utf-8")
            return

        head = [handler.requestline]
        head.extend(f"{key}: {value}" for key, value in handler.headers.items())
        try:
            backend.sendall(("\r\n".join(head) + "\r\n\r\n").encode("latin-1"))
        except OSError as exc:
            logger.error("Error copying request to backend: %s", exc)
            backend.close()
            return

        handler.wfile.flush()
        tunnel(handler.connection, handler.rfile.read1, backend)
        handler.close_connection = True

    def make_server(self) -> HarnessServer:
        http = self.context.config.http
        server = HarnessServer((http.addr, http.port), self)
        if self.use_tls:
            tls = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            tls.load_cert_chain(http.ssl_cert, http.ssl_key)
            server.socket = tls.wrap_socket(server.socket, server_side=True)
        return server

    def stop(self) -> None:
        self._stop.set()

    def _on_signal(self, signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        self._stop.set()

    def shutdown(self, server: HarnessServer | None = None) -> None:
        self._stop.set()
        # A rebuild in progress finishes before the app is killed.
        with self.watcher.exclusive():
            if self.app is not None:
                self.app.kill()
                self.app = None
        if server is not None:
            server.shutdown()
            server.server_close()
        self.client.close()

    def run(self) -> int:
        """Serve until SIGINT/SIGTERM or a fatal toolchain error; return the exit code."""
        try:
            resolve_python(self.context)
        except ToolchainMissingError as exc:
            logger.critical("%s", exc)
            return 1

        server = self.make_server()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        host, port = server.server_address[:2]
        logger.info("Listening on %s:%d (app on %s:%d)", host or "0.0.0.0", port, self.backend_host, self.port)

        previous = {sig: signal.signal(sig, self._on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            while not self._stop.wait(timeout=1.0):
                pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            self.shutdown(server)
        return 1 if self.fatal is not None else 0
