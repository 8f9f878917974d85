from __future__ import annotations

import socket
import ssl
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from email.message import Message
from typing import Any, BinaryIO

import httpx

from gantry.logging import get_logger

logger = get_logger("proxy")

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
BUFFER_SIZE = 64 * 1024
JOIN_TIMEOUT = 5.0


@dataclass(slots=True)
class ProxiedResponse:
    status_code: int
    reason: str
    headers: list[tuple[str, str]] = field(default_factory=list)
    content: bytes = b""
    # Upstream Content-Length, kept for responses that carry no body such as HEAD.
    content_length: str | None = None


def is_websocket_upgrade(headers: Message) -> bool:
    return headers.get("Upgrade", "").strip().lower() == "websocket"


def read_body(headers: Message, reader: BinaryIO) -> bytes:
    if "chunked" in headers.get("Transfer-Encoding", "").lower():
        chunks: list[bytes] = []
        while True:
            size_line = reader.readline()
            size = int(size_line.split(b";", 1)[0].strip() or b"0", 16)
            if size == 0:
                # Trailers end with an empty line.
                while reader.readline() not in (b"\r\n", b"\n", b""):
                    pass
                return b"".join(chunks)
            chunks.append(reader.read(size))
            reader.readline()
    length = int(headers.get("Content-Length", "0") or "0")
    return reader.read(length) if length > 0 else b""


def forward(
    client: httpx.Client,
    method: str,
    path: str,
    headers: Message,
    body: bytes,
    client_ip: str,
) -> ProxiedResponse:
    """Send one buffered request upstream and return the raw upstream response."""
    outbound = [(key, value) for key, value in headers.items() if key.lower() not in HOP_BY_HOP]
    outbound = [(key, value) for key, value in outbound if key.lower() not in {"content-length", "x-forwarded-for"}]
    prior = headers.get("X-Forwarded-For")
    outbound.append(("X-Forwarded-For", f"{prior}, {client_ip}" if prior else client_ip))

    request = client.build_request(method, path, headers=outbound, content=body)
    response = client.send(request, stream=True)
    try:
        content = b"".join(response.iter_raw())
    finally:
        response.close()

    response_headers = [
        (key, value)
        for key, value in response.headers.multi_items()
        if key.lower() not in HOP_BY_HOP and key.lower() != "content-length"
    ]
    return ProxiedResponse(
        status_code=response.status_code,
        reason=response.reason_phrase,
        headers=response_headers,
        content=content,
        content_length=response.headers.get("content-length"),
    )


def dial_backend(host: str, port: int, use_tls: bool, timeout: float = 5.0) -> socket.socket:
    conn = socket.create_connection((host, port), timeout=timeout)
    conn.settimeout(None)
    if use_tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        conn = context.wrap_socket(conn, server_hostname=host)
    return conn


def _pipe(read: Callable[[int], bytes], write: Callable[[bytes], Any], done: threading.Event, label: str) -> None:
    try:
        while not done.is_set():
            chunk = read(BUFFER_SIZE)
            if not chunk:
                break
            write(chunk)
    except (OSError, ValueError) as exc:
        logger.debug("Tunnel %s closed: %s", label, exc)
    finally:
        done.set()


def _shutdown(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def tunnel(
    client_conn: socket.socket,
    client_read: Callable[[int], bytes],
    backend_conn: socket.socket,
) -> None:
    """Copy bytes both ways until either side finishes, then tear both down.

    ``client_read`` reads from the client connection; it is the request
    handler's buffered reader so bytes already buffered are not lost.
    """
    done = threading.Event()
    threads = [
        threading.Thread(
            target=_pipe,
            args=(client_read, backend_conn.sendall, done, "client->backend"),
            daemon=True,
        ),
        threading.Thread(
            target=_pipe,
            args=(backend_conn.recv, client_conn.sendall, done, "backend->client"),
            daemon=True,
        ),
    ]
    for thread in threads:
        thread.start()
    done.wait()

    _shutdown(client_conn)
    _shutdown(backend_conn)
    backend_conn.close()
    for thread in threads:
        thread.join(timeout=JOIN_TIMEOUT)
