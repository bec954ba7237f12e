import email.utils
from datetime import timezone
from typing import NamedTuple

from .errors import ClientError

MAX_HEAD_BYTES = 65536

REASONS = {
    200: "OK",
    304: "Not Modified",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    500: "Internal Server Error",
}


class RequestHead(NamedTuple):
    method: str
    target: str
    version: str
    headers: dict


def http_date(ts: float | None = None) -> str:
    # RFC 7231 format
    return email.utils.formatdate(ts, usegmt=True)


def parse_http_date(value: str | None) -> int | None:
    """Return the timestamp in whole epoch seconds, or None if unparseable."""
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def build_response_head(status_code: int, reason: str, headers: dict) -> bytes:
    lines = [f"HTTP/1.1 {status_code} {reason}\r\n"]
    for key, value in headers.items():
        lines.append(f"{key}: {value}\r\n")
    lines.append("\r\n")
    return "".join(lines).encode("iso-8859-1")


def parse_request_head(data: bytes) -> RequestHead:
    header = data.split(b"\r\n\r\n", 1)[0].decode("iso-8859-1")
    lines = header.split("\r\n")
    parts = lines[0].split(" ")
    if len(parts) != 3 or not parts[0] or not parts[1]:
        raise ClientError(f"malformed request line: {lines[0]!r}")
    method, target, version = parts
    if not version.startswith("HTTP/1."):
        raise ClientError(f"unsupported protocol version: {version!r}")

    headers = {}
    for line in lines[1:]:
        if not line:
            continue
        if ":" not in line:
            raise ClientError(f"malformed header line: {line!r}")
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()
    return RequestHead(method, target, version, headers)
