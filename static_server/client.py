"""
Minimal raw-socket HTTP client.

Ordinary HTTP clients normalize request targets before sending them, which
hides ``..`` segments and odd escapes from the server. This client writes
the target exactly as given, so it can probe the server's path handling.

    python -m static_server.client host port url_path [directory]
"""

import socket
import sys
from pathlib import Path
from typing import NamedTuple, Optional


class RawResponse(NamedTuple):
    status: int
    headers: dict
    body: bytes


def recv_all(sock: socket.socket, timeout: float = 3.0) -> bytes:
    sock.settimeout(timeout)
    chunks: list[bytes] = []
    while True:
        try:
            data = sock.recv(4096)
        except (TimeoutError, ConnectionResetError):
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def parse_response(raw: bytes) -> RawResponse:
    try:
        header_raw, body = raw.split(b"\r\n\r\n", 1)
    except ValueError:
        return RawResponse(0, {}, raw)
    header_text = header_raw.decode("iso-8859-1", errors="replace")
    lines = header_text.split("\r\n")
    parts = lines[0].split() if lines else []
    status = int(parts[1]) if len(parts) >= 2 and parts[1].isdigit() else 0
    headers = {}
    for line in lines[1:]:
        if ":" in line:
            k, v = line.split(":", 1)
            headers[k.strip().lower()] = v.strip()
    return RawResponse(status, headers, body)


def encode_request(method: str, target: str, host: str, headers: Optional[dict] = None, keep_alive: bool = False) -> bytes:
    lines = [f"{method} {target} HTTP/1.1", f"Host: {host}"]
    for key, value in (headers or {}).items():
        lines.append(f"{key}: {value}")
    if not keep_alive:
        lines.append("Connection: close")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("iso-8859-1")


def read_response(sock: socket.socket, method: str = "GET", timeout: float = 5.0) -> RawResponse:
    """Read exactly one framed response, leaving the connection usable."""
    sock.settimeout(timeout)
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    head, _, rest = data.partition(b"\r\n\r\n")
    response = parse_response(head + b"\r\n\r\n")
    if method == "HEAD" or response.status == 304:
        return RawResponse(response.status, response.headers, b"")
    length = int(response.headers.get("content-length", "0"))
    while len(rest) < length:
        chunk = sock.recv(4096)
        if not chunk:
            break
        rest += chunk
    return RawResponse(response.status, response.headers, rest[:length])


def raw_request(host: str, port: int, method: str, target: str, headers: Optional[dict] = None, timeout: float = 5.0) -> RawResponse:
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(encode_request(method, target, f"{host}:{port}", headers))
        raw = recv_all(sock, timeout=timeout)
    response = parse_response(raw)
    if method == "HEAD":
        return RawResponse(response.status, response.headers, b"")
    return response


def main():
    if len(sys.argv) not in (4, 5):
        print("Usage: python -m static_server.client server_host server_port url_path [directory]", file=sys.stderr)
        sys.exit(1)
    host = sys.argv[1]
    port = int(sys.argv[2])
    path = sys.argv[3]

    response = raw_request(host, port, "GET", path)
    ctype = response.headers.get("content-type", "")
    if response.status != 200:
        print(response.body.decode("utf-8", errors="replace"), end="")
        sys.exit(1)

    if ctype.startswith("text/") or len(sys.argv) == 4:
        sys.stdout.buffer.write(response.body)
        return
    outdir = Path(sys.argv[4])
    outdir.mkdir(parents=True, exist_ok=True)
    target = outdir / (Path(path).name or "download.bin")
    with open(target, "wb") as f:
        f.write(response.body)
    print(str(target))


if __name__ == "__main__":
    main()
