"""
Response streamer: conditional evaluation, response headers and file bodies.

Planning is transport-neutral. A ResponsePlan says what status and headers
to send and whether a file body follows; FileBody hands the bytes out in
bounded chunks so neither transport ever holds a whole file in memory.
"""

import logging
import math
from typing import NamedTuple, Optional

from .errors import NotFound, RequestError, ServerError, StreamError
from .http import REASONS, http_date, parse_http_date
from .mime import content_type_for
from .router import ResolvedTarget

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=60"
CHUNK_SIZE = 64 * 1024


class ResponsePlan(NamedTuple):
    status: int
    headers: dict
    body: bytes = b""
    target: Optional[ResolvedTarget] = None

    @property
    def reason(self) -> str:
        return REASONS.get(self.status, "Unknown")

    @property
    def streams_file(self) -> bool:
        return self.target is not None


def plan_response(target: ResolvedTarget, method: str, if_modified_since: Optional[str] = None) -> ResponsePlan:
    # HTTP dates have one-second resolution
    mtime = math.floor(target.mtime)
    cache_headers = {
        "Last-Modified": http_date(mtime),
        "Cache-Control": CACHE_CONTROL,
    }

    since = parse_http_date(if_modified_since)
    if since is not None and mtime <= since:
        return ResponsePlan(304, cache_headers)

    headers = {
        "Content-Type": content_type_for(target.path),
        "Content-Length": str(target.size),
        **cache_headers,
    }
    if method == "HEAD":
        return ResponsePlan(200, headers)
    return ResponsePlan(200, headers, target=target)


def plan_error(error: RequestError, method: str) -> ResponsePlan:
    body = error.body()
    headers = {
        "Content-Type": "text/plain",
        "Content-Length": str(len(body)),
        **error.headers,
    }
    if method == "HEAD":
        body = b""
    return ResponsePlan(error.status, headers, body)


class FileBody:
    """Chunked reader over a resolved file, capped at the advertised size.

    The file is opened eagerly so that open failures surface before the
    response head is committed. Reads never return more than ``size`` bytes
    in total; a file that shrinks mid-transfer raises StreamError.
    """

    def __init__(self, target: ResolvedTarget, chunk_size: int = CHUNK_SIZE):
        self.path = target.path
        self.size = target.size
        self.remaining = target.size
        self.chunk_size = chunk_size
        try:
            self.file = open(target.path, "rb")
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFound(target.path) from exc
        except OSError as exc:
            logger.error(f"open failed for {target.path}: {exc}")
            raise ServerError(str(exc)) from exc

    def read_chunk(self) -> bytes:
        if self.remaining <= 0:
            return b""
        try:
            chunk = self.file.read(min(self.chunk_size, self.remaining))
        except OSError as exc:
            raise StreamError(f"read failed for {self.path}: {exc}") from exc
        if not chunk:
            raise StreamError(f"{self.path} truncated: {self.remaining} of {self.size} bytes missing")
        self.remaining -= len(chunk)
        return chunk

    def __iter__(self):
        while True:
            chunk = self.read_chunk()
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
