"""
Request outcome taxonomy.

Every rejection the router can produce is a RequestError subclass; the
transport renders it as a plain-text response and moves on.
"""


class ConfigError(Exception):
    """Raised at startup when the environment describes an unusable server."""


class RequestError(Exception):
    status = 500
    reason = "Internal Server Error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.reason)
        self.detail = detail

    @property
    def headers(self) -> dict:
        return {}

    def body(self) -> bytes:
        return f"{self.status} {self.reason}\n".encode("ascii")


class ClientError(RequestError):
    status = 400
    reason = "Bad Request"


class MethodNotAllowed(ClientError):
    status = 405
    reason = "Method Not Allowed"

    @property
    def headers(self) -> dict:
        return {"Allow": "GET, HEAD"}


class AccessDenied(RequestError):
    status = 403
    reason = "Forbidden"


class NotFound(RequestError):
    status = 404
    reason = "Not Found"


class ServerError(RequestError):
    status = 500
    reason = "Internal Server Error"


class StreamError(Exception):
    """File read failed after the response head was committed."""
