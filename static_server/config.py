"""
Process configuration, read once at startup from the environment.

    PORT           listening port (default 8080)
    WEBROOT        directory to serve (default ./public)
    HOST           bind address (default 0.0.0.0)
    MAX_THREADS    worker threads for the threaded engine (default 10)
    SERVER_ENGINE  "threaded" or "asgi" (default threaded)
    LOG_LEVEL      logging level name (default INFO)

Positional command-line arguments ``<content_dir> [port]`` take precedence
over WEBROOT and PORT.
"""

import logging
import os
from typing import Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    webroot: str
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    max_threads: int = Field(default=10, ge=1)
    engine: Literal["threaded", "asgi"] = "threaded"
    log_level: str = "INFO"

    @field_validator("webroot")
    @classmethod
    def canonical_webroot(cls, value: str) -> str:
        path = os.path.realpath(value)
        if not os.path.isdir(path):
            raise ValueError(f"webroot is not a directory: {path}")
        return path

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level


def load_config(environ: Optional[Mapping[str, str]] = None, argv: Optional[Sequence[str]] = None) -> ServerConfig:
    env = os.environ if environ is None else environ
    args = list(argv or [])

    values = {
        "webroot": args[0] if args else env.get("WEBROOT", "./public"),
        "port": args[1] if len(args) > 1 else env.get("PORT", "8080"),
        "host": env.get("HOST", "0.0.0.0"),
        "max_threads": env.get("MAX_THREADS", "10"),
        "engine": env.get("SERVER_ENGINE", "threaded").lower(),
        "log_level": env.get("LOG_LEVEL", "INFO"),
    }
    try:
        return ServerConfig(**values)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
