"""
ASGI transport for the static file server, served by uvicorn.

The app runs the same router and streamer as the threaded engine. Stat,
open and read calls are pushed to worker threads so a slow disk never
stalls the event loop, and the body is pulled one chunk at a time so a
slow client applies backpressure instead of growing memory.
"""

import logging
from typing import Optional

import anyio
import anyio.to_thread
import uvicorn
from fastapi import Request
from fastapi.responses import Response, StreamingResponse

from .accesslog import AccessLogSink, AccessRecord, log_access
from .config import ServerConfig
from .errors import RequestError, StreamError
from .router import RequestDescriptor, Router
from .streamer import FileBody, plan_error, plan_response

logger = logging.getLogger(__name__)


def raw_target_from_scope(scope: dict) -> str:
    # Never use scope["path"]: it is already percent-decoded
    raw_path = scope.get("raw_path") or scope["path"].encode("utf-8")
    query = scope.get("query_string", b"")
    if query:
        raw_path = raw_path + b"?" + query
    return raw_path.decode("iso-8859-1")


class StaticFilesApp:
    def __init__(self, webroot: str, access_log: Optional[AccessLogSink] = None):
        self.router = Router(webroot)
        self.access_log = access_log or log_access

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope["type"] != "http":
            raise RuntimeError(f"unsupported scope type: {scope['type']}")

        request = Request(scope, receive)
        descriptor = RequestDescriptor(
            method=request.method,
            raw_target=raw_target_from_scope(scope),
            host=request.headers.get("host"),
            remote_addr=request.client.host if request.client else "-",
            if_modified_since=request.headers.get("if-modified-since"),
        )

        body = None
        try:
            target = await anyio.to_thread.run_sync(self.router.resolve, descriptor)
            logger.debug(f"Resolved {target.describe()} for {descriptor.remote_addr}")
            plan = plan_response(target, descriptor.method, descriptor.if_modified_since)
            if plan.streams_file:
                body = await anyio.to_thread.run_sync(FileBody, target)
        except RequestError as exc:
            plan = plan_error(exc, descriptor.method)

        if body is None:
            response = Response(content=plan.body, status_code=plan.status, headers=plan.headers)
            await response(scope, receive, send)
            self._log(descriptor, plan.status, len(plan.body))
            return

        progress = {"sent": 0}
        try:
            response = StreamingResponse(
                self._stream(body, descriptor, progress),
                status_code=plan.status,
                headers=plan.headers,
            )
            await response(scope, receive, send)
        finally:
            body.close()
            self._log(descriptor, plan.status, progress["sent"])

    async def _stream(self, body: FileBody, descriptor: RequestDescriptor, progress: dict):
        try:
            while True:
                chunk = await anyio.to_thread.run_sync(body.read_chunk)
                if not chunk:
                    return
                yield chunk
                progress["sent"] += len(chunk)
        except StreamError as exc:
            logger.error(f"Aborting response to {descriptor.remote_addr} for {descriptor.raw_target}: {exc}")
            raise

    async def _lifespan(self, receive, send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return

    def _log(self, descriptor: RequestDescriptor, status: int, bytes_sent: int) -> None:
        try:
            self.access_log(
                AccessRecord.now(descriptor.remote_addr, descriptor.method, descriptor.raw_target, status, bytes_sent)
            )
        except Exception:
            logger.exception("Access log sink failed")


def create_app(config: ServerConfig, access_log: Optional[AccessLogSink] = None) -> StaticFilesApp:
    return StaticFilesApp(config.webroot, access_log)


def serve_asgi(config: ServerConfig) -> None:
    app = create_app(config)
    logger.info(f"Serving {config.webroot} on {config.host}:{config.port} (asgi)")
    uv_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=False,
    )
    server = uvicorn.Server(uv_config)
    server.run()
