"""
Request router: turns a raw method and request target into a file on disk.

The router runs the per-request pipeline up to the point where bytes can be
streamed: method gate, raw-target pre-screen, strict decoding,
normalization, containment against the webroot and stat-based resolution
(including the directory -> index.html fallback). Every rejection is raised
as a RequestError subclass.
"""

import logging
import os
import posixpath
import re
import stat
from typing import NamedTuple, Optional
from urllib.parse import unquote_to_bytes, urlsplit

from .errors import AccessDenied, ClientError, MethodNotAllowed, NotFound, ServerError

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")
INDEX_FILE = "index.html"

# Literal and percent-encoded spellings of a parent segment, matched lowercase
TRAVERSAL_MARKERS = ("..", "%2e%2e", ".%2e", "%2e.")

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_BAD_AUTHORITY_CHARS = set("/?#@\\ \t")


class RequestDescriptor(NamedTuple):
    method: str
    raw_target: str
    host: Optional[str] = None
    remote_addr: str = "-"
    if_modified_since: Optional[str] = None


class ResolvedTarget(NamedTuple):
    path: str
    pathname: str
    size: int
    mtime: float
    is_index: bool = False

    def describe(self) -> str:
        suffix = " (directory index)" if self.is_index else ""
        return f"{self.pathname} -> {self.path}{suffix}"


def has_traversal_marker(raw_target: str) -> bool:
    lowered = raw_target.lower()
    return any(marker in lowered for marker in TRAVERSAL_MARKERS)


def is_contained(root: str, path: str) -> bool:
    """True if canonical ``path`` is ``root`` or lies beneath it.

    Both arguments must already be canonical absolute paths. The root is
    compared with a trailing separator so that ``/srv/app`` does not admit
    ``/srv/app-evil``.
    """
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path == root or path.startswith(prefix)


def _check_authority(host: Optional[str]) -> None:
    authority = host or "localhost"
    if any(ch in _BAD_AUTHORITY_CHARS for ch in authority):
        raise ClientError(f"invalid Host header: {authority!r}")
    try:
        parts = urlsplit(f"http://{authority}/")
        parts.port
    except ValueError as exc:
        raise ClientError(f"invalid Host header: {authority!r}") from exc
    if not parts.hostname:
        raise ClientError(f"invalid Host header: {authority!r}")


def decode_pathname(raw_target: str, host: Optional[str] = None) -> str:
    """Extract and percent-decode the path of a request target.

    Origin-form targets are resolved against ``http://<host>/``; absolute-form
    targets carry their own authority. Malformed escapes, invalid UTF-8 and
    bad authorities raise ClientError.
    """
    _check_authority(host)

    if raw_target.startswith("/"):
        path = raw_target.split("#", 1)[0].split("?", 1)[0]
    elif raw_target.lower().startswith(("http://", "https://")):
        try:
            parts = urlsplit(raw_target)
            parts.port
        except ValueError as exc:
            raise ClientError(f"invalid request target: {raw_target!r}") from exc
        if not parts.hostname:
            raise ClientError(f"invalid request target: {raw_target!r}")
        path = parts.path or "/"
    else:
        raise ClientError(f"unsupported request target form: {raw_target!r}")

    if _BAD_ESCAPE.search(path):
        raise ClientError(f"malformed percent-escape in {raw_target!r}")
    try:
        return unquote_to_bytes(path.encode("iso-8859-1")).decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError) as exc:
        raise ClientError(f"undecodable request target: {raw_target!r}") from exc


def normalize_pathname(pathname: str) -> str:
    normalized = posixpath.normpath(pathname)
    # normpath keeps a leading "//"; collapse it like any other separator run
    return "/" + normalized.lstrip("/")


class Router:
    def __init__(self, webroot: str):
        self.webroot = os.path.realpath(webroot)

    def resolve(self, request: RequestDescriptor) -> ResolvedTarget:
        if request.method not in ALLOWED_METHODS:
            raise MethodNotAllowed(request.method)

        if has_traversal_marker(request.raw_target):
            logger.warning(f"Blocked traversal attempt from {request.remote_addr}: {request.raw_target!r}")
            raise AccessDenied("parent segment in request target")

        pathname = normalize_pathname(decode_pathname(request.raw_target, request.host))
        if "\x00" in pathname:
            raise AccessDenied("NUL byte in path")

        candidate = os.path.realpath(os.path.join(self.webroot, pathname.lstrip("/")))
        if not is_contained(self.webroot, candidate):
            logger.warning(f"Path {pathname!r} resolved outside webroot: {candidate}")
            raise AccessDenied("path escapes webroot")

        st = self._stat(candidate)
        if stat.S_ISDIR(st.st_mode):
            return self._resolve_index(candidate, pathname)
        if not stat.S_ISREG(st.st_mode):
            raise AccessDenied(f"not a regular file: {candidate}")
        return ResolvedTarget(candidate, pathname, st.st_size, st.st_mtime)

    def _stat(self, path: str) -> os.stat_result:
        try:
            return os.stat(path)
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFound(path) from exc
        except OSError as exc:
            logger.error(f"stat failed for {path}: {exc}")
            raise ServerError(str(exc)) from exc

    def _resolve_index(self, directory: str, pathname: str) -> ResolvedTarget:
        # Any failure here is 403: a directory without an index is not listable
        index_path = os.path.realpath(os.path.join(directory, INDEX_FILE))
        if not is_contained(self.webroot, index_path):
            raise AccessDenied("index file escapes webroot")
        try:
            st = os.stat(index_path)
        except OSError as exc:
            raise AccessDenied(f"no index file in {directory}") from exc
        if not stat.S_ISREG(st.st_mode):
            raise AccessDenied(f"index is not a regular file: {index_path}")
        return ResolvedTarget(index_path, pathname, st.st_size, st.st_mtime, is_index=True)
