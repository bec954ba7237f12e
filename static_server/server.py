"""
Threaded HTTP/1.1 transport.

One thread runs a selector loop that accepts connections and buffers
request heads. A connection is handed to the ThreadPoolExecutor only once
a complete head has arrived, so idle keep-alive sockets and clients that
dribble their request never occupy a worker. Each head must arrive within
HEAD_TIMEOUT of the connection being parked, however slowly it trickles in.

A worker writes the complete response and then returns a persistent
connection to the selector loop, so there is never more than one response
in flight per connection.
"""

import logging
import queue
import selectors
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from typing import Optional

from .accesslog import AccessLogSink, AccessRecord, log_access
from .config import ServerConfig
from .errors import ClientError, MethodNotAllowed, RequestError, StreamError
from .http import MAX_HEAD_BYTES, RequestHead, build_response_head, http_date, parse_request_head
from .router import RequestDescriptor, Router
from .streamer import FileBody, ResponsePlan, plan_error, plan_response

logger = logging.getLogger(__name__)

HEAD_TIMEOUT = 5.0
SEND_TIMEOUT = 5.0
SELECT_TIMEOUT = 0.5
RECV_SIZE = 4096

_WAKE = "wake"


def wants_keep_alive(head: RequestHead) -> bool:
    tokens = {t.strip().lower() for t in head.headers.get("connection", "").split(",")}
    # Request bodies are never read, so the connection cannot be reused
    if "transfer-encoding" in head.headers or head.headers.get("content-length", "0").strip() not in ("", "0"):
        return False
    if head.version == "HTTP/1.0":
        return "keep-alive" in tokens
    return "close" not in tokens


class PendingConnection:
    """A connection waiting in the selector loop for its next request head."""

    __slots__ = ("conn", "remote", "buffer", "deadline")

    def __init__(self, conn: socket.socket, remote: str, buffer: bytes = b""):
        self.conn = conn
        self.remote = remote
        self.buffer = buffer
        self.deadline = time.monotonic() + HEAD_TIMEOUT

    def head_ready(self) -> bool:
        return b"\r\n\r\n" in self.buffer or len(self.buffer) >= MAX_HEAD_BYTES


def _close(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    conn.close()


class StaticHTTPServer:
    def __init__(self, config: ServerConfig, access_log: Optional[AccessLogSink] = None):
        self.config = config
        self.router = Router(config.webroot)
        self.access_log = access_log or log_access
        self._socket: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._selector: Optional[selectors.BaseSelector] = None
        self._parked: dict = {}
        self._returned: queue.SimpleQueue = queue.SimpleQueue()
        self._waker_r: Optional[socket.socket] = None
        self._waker_w: Optional[socket.socket] = None
        self._stop = threading.Event()

    @property
    def server_address(self) -> tuple:
        if self._socket is None:
            raise RuntimeError("server has not been started")
        return self._socket.getsockname()[:2]

    def start(self) -> None:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((self.config.host, self.config.port))
            s.listen(128)
        except OSError:
            s.close()
            raise
        s.setblocking(False)
        self._socket = s

        self._waker_r, self._waker_w = socket.socketpair()
        self._waker_r.setblocking(False)
        self._waker_w.setblocking(False)
        self._selector = selectors.DefaultSelector()
        self._selector.register(s, selectors.EVENT_READ, data=None)
        self._selector.register(self._waker_r, selectors.EVENT_READ, data=_WAKE)

        self._executor = ThreadPoolExecutor(max_workers=self.config.max_threads, thread_name_prefix="static-worker")
        host, port = self.server_address
        logger.info(f"Serving {self.config.webroot} on {host}:{port} (max {self.config.max_threads} threads)")

    def serve_forever(self) -> None:
        if self._socket is None:
            self.start()
        try:
            while not self._stop.is_set():
                for key, _ in self._selector.select(timeout=SELECT_TIMEOUT):
                    if key.data is None:
                        self._accept()
                    elif key.data is _WAKE:
                        self._drain_returned()
                    else:
                        self._on_readable(key.data)
                self._sweep_expired()
        finally:
            for pending in list(self._parked.values()):
                self._discard(pending)
            self._executor.shutdown(wait=True)
            # Workers may have handed back connections after the loop stopped
            self._drain_returned()
            self._selector.close()
            self._socket.close()
            self._waker_r.close()
            self._waker_w.close()
            logger.info("Server closed")

    def shutdown(self) -> None:
        self._stop.set()
        self._wake()

    def _wake(self) -> None:
        if self._waker_w is None:
            return
        try:
            self._waker_w.send(b"\0")
        except OSError:
            # Buffer full means a wake-up is already pending
            pass

    def _accept(self) -> None:
        while True:
            try:
                conn, addr = self._socket.accept()
            except BlockingIOError:
                return
            except OSError as exc:
                logger.warning(f"accept failed: {exc}")
                return
            remote = addr[0] if isinstance(addr, tuple) else str(addr)
            self._park(PendingConnection(conn, remote))

    def _park(self, pending: PendingConnection) -> None:
        if pending.head_ready():
            self._dispatch(pending)
            return
        pending.conn.setblocking(False)
        self._parked[pending.conn] = pending
        self._selector.register(pending.conn, selectors.EVENT_READ, data=pending)

    def _unpark(self, pending: PendingConnection) -> None:
        if self._parked.pop(pending.conn, None) is not None:
            self._selector.unregister(pending.conn)

    def _discard(self, pending: PendingConnection) -> None:
        self._unpark(pending)
        _close(pending.conn)

    def _on_readable(self, pending: PendingConnection) -> None:
        try:
            chunk = pending.conn.recv(RECV_SIZE)
        except BlockingIOError:
            return
        except OSError as exc:
            logger.info(f"Connection from {pending.remote} dropped: {exc}")
            self._discard(pending)
            return
        if not chunk:
            self._discard(pending)
            return
        pending.buffer += chunk
        if pending.head_ready():
            self._unpark(pending)
            self._dispatch(pending)

    def _sweep_expired(self) -> None:
        now = time.monotonic()
        for pending in list(self._parked.values()):
            if pending.deadline <= now:
                logger.debug(f"Closing idle connection from {pending.remote}")
                self._discard(pending)

    def _drain_returned(self) -> None:
        try:
            while self._waker_r.recv(RECV_SIZE):
                pass
        except OSError:
            pass
        while True:
            try:
                pending = self._returned.get_nowait()
            except queue.Empty:
                return
            if self._stop.is_set():
                _close(pending.conn)
            else:
                self._park(pending)

    def _dispatch(self, pending: PendingConnection) -> None:
        pending.conn.settimeout(SEND_TIMEOUT)
        self._executor.submit(self._serve, pending)

    def _serve(self, pending: PendingConnection) -> None:
        """Worker entry point: answer one buffered request head."""
        conn, remote = pending.conn, pending.remote
        keep_alive = False
        rest = b""
        try:
            if b"\r\n\r\n" not in pending.buffer:
                error = ClientError("request head too large")
                self._send_plan(conn, plan_error(error, "GET"), keep_alive=False)
                self._log(remote, "-", "-", error.status, len(error.body()))
            else:
                head, rest = pending.buffer.split(b"\r\n\r\n", 1)
                keep_alive = self._handle_request(conn, remote, head)
        except OSError as exc:
            logger.info(f"Connection from {remote} dropped: {exc}")
            keep_alive = False
        except Exception:
            logger.exception(f"Unhandled error on connection from {remote}")
            keep_alive = False

        if keep_alive and not self._stop.is_set():
            self._returned.put(PendingConnection(conn, remote, rest))
            self._wake()
        else:
            _close(conn)

    def _handle_request(self, conn: socket.socket, remote: str, head_bytes: bytes) -> bool:
        try:
            head = parse_request_head(head_bytes)
        except ClientError as exc:
            logger.info(f"Bad request from {remote}: {exc}")
            self._send_plan(conn, plan_error(exc, "GET"), keep_alive=False)
            self._log(remote, "-", "-", exc.status, len(exc.body()))
            return False

        keep_alive = wants_keep_alive(head)
        request = RequestDescriptor(
            method=head.method,
            raw_target=head.target,
            host=head.headers.get("host"),
            remote_addr=remote,
            if_modified_since=head.headers.get("if-modified-since"),
        )

        body = None
        try:
            target = self.router.resolve(request)
            logger.debug(f"Resolved {target.describe()} for {remote}")
            plan = plan_response(target, request.method, request.if_modified_since)
            if plan.streams_file:
                body = FileBody(target)
        except RequestError as exc:
            if isinstance(exc, MethodNotAllowed):
                keep_alive = False
            plan = plan_error(exc, request.method)

        with body if body is not None else nullcontext():
            self._send_plan(conn, plan, keep_alive)
            sent = len(plan.body)
            if body is not None:
                try:
                    for chunk in body:
                        conn.sendall(chunk)
                        sent += len(chunk)
                except StreamError as exc:
                    # Head already committed; the only signal left is closing the connection
                    logger.error(f"Aborting response to {remote} for {request.raw_target}: {exc}")
                    self._log(remote, request.method, request.raw_target, plan.status, sent)
                    return False
                except OSError as exc:
                    logger.info(f"Client {remote} disconnected after {sent} bytes: {exc}")
                    self._log(remote, request.method, request.raw_target, plan.status, sent)
                    return False

        self._log(remote, request.method, request.raw_target, plan.status, sent)
        return keep_alive

    def _send_plan(self, conn: socket.socket, plan: ResponsePlan, keep_alive: bool) -> None:
        headers = {
            "Date": http_date(),
            **plan.headers,
            "Connection": "keep-alive" if keep_alive else "close",
        }
        conn.sendall(build_response_head(plan.status, plan.reason, headers) + plan.body)

    def _log(self, remote: str, method: str, target: str, status: int, bytes_sent: int) -> None:
        try:
            self.access_log(AccessRecord.now(remote, method, target, status, bytes_sent))
        except Exception:
            logger.exception("Access log sink failed")


def run_server(config: ServerConfig, access_log: Optional[AccessLogSink] = None) -> StaticHTTPServer:
    server = StaticHTTPServer(config, access_log)
    server.start()
    return server
