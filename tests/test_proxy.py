from __future__ import annotations

import io
import json
import socket
import threading
from email.message import Message
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from gantry.harness.proxy import forward, is_websocket_upgrade, read_body, tunnel


class _Backend(BaseHTTPRequestHandler):
    def do_POST(self) -> None:
        body = self.rfile.read(int(self.headers.get("Content-Length", "0")))
        payload = json.dumps(
            {
                "path": self.path,
                "xff": self.headers.get("X-Forwarded-For"),
                "proxy_authorization": self.headers.get("Proxy-Authorization"),
                "body": body.decode("utf-8"),
            }
        ).encode("utf-8")
        self.send_response(201)
        self.send_header("Content-Type", "application/json")
        self.send_header("X-Backend", "yes")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def do_GET(self) -> None:
        self.send_response(302)
        self.send_header("Location", "/elsewhere")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args: object) -> None:
        pass


@pytest.fixture
def backend():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Backend)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def _headers(**values: str) -> Message:
    message = Message()
    for key, value in values.items():
        message[key.replace("_", "-")] = value
    return message


def _recv_exact(conn: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def test_forward_passes_request_and_response_through(backend) -> None:
    headers = _headers(
        Content_Type="text/plain",
        X_Forwarded_For="1.2.3.4",
        Proxy_Authorization="secret",
    )
    with httpx.Client(base_url=backend) as client:
        response = forward(client, "POST", "/orders/create?x=1", headers, b"hello", "10.0.0.5")

    assert response.status_code == 201
    headers_by_name = {key.lower(): value for key, value in response.headers}
    assert headers_by_name["x-backend"] == "yes"
    assert "content-length" not in headers_by_name
    payload = json.loads(response.content)
    assert payload == {
        "path": "/orders/create?x=1",
        "xff": "1.2.3.4, 10.0.0.5",
        "proxy_authorization": None,
        "body": "hello",
    }


def test_forward_does_not_follow_redirects(backend) -> None:
    with httpx.Client(base_url=backend) as client:
        response = forward(client, "GET", "/", _headers(), b"", "127.0.0.1")

    assert response.status_code == 302
    assert ("location", "/elsewhere") in [(key.lower(), value) for key, value in response.headers]


def test_read_body_handles_chunked_and_sized() -> None:
    chunked = io.BytesIO(b"4\r\nWiki\r\n5;ext=1\r\npedia\r\n0\r\n\r\n")
    assert read_body(_headers(Transfer_Encoding="chunked"), chunked) == b"Wikipedia"

    sized = io.BytesIO(b"abcdef")
    assert read_body(_headers(Content_Length="3"), sized) == b"abc"
    assert read_body(_headers(), io.BytesIO(b"ignored")) == b""


def test_websocket_upgrade_detection() -> None:
    assert is_websocket_upgrade(_headers(Upgrade="WebSocket", Connection="Upgrade"))
    assert not is_websocket_upgrade(_headers(Upgrade="h2c"))
    assert not is_websocket_upgrade(_headers())


def test_tunnel_copies_both_ways_and_tears_down() -> None:
    client_outer, client_inner = socket.socketpair()
    backend_inner, backend_outer = socket.socketpair()
    for conn in (client_outer, backend_outer):
        conn.settimeout(5)
    reader = client_inner.makefile("rb")

    thread = threading.Thread(target=tunnel, args=(client_inner, reader.read1, backend_inner), daemon=True)
    thread.start()

    client_outer.sendall(b"ping")
    assert _recv_exact(backend_outer, 4) == b"ping"
    backend_outer.sendall(b"pong")
    assert _recv_exact(client_outer, 4) == b"pong"

    backend_outer.close()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert client_outer.recv(16) == b""
    client_outer.close()
    reader.close()


def test_tunnel_ends_when_client_closes() -> None:
    client_outer, client_inner = socket.socketpair()
    backend_inner, backend_outer = socket.socketpair()
    backend_outer.settimeout(5)
    reader = client_inner.makefile("rb")

    thread = threading.Thread(target=tunnel, args=(client_inner, reader.read1, backend_inner), daemon=True)
    thread.start()
    client_outer.close()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert backend_outer.recv(16) == b""
    backend_outer.close()
    reader.close()
