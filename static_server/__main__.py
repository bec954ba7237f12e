import logging
import signal
import sys

from .config import load_config
from .errors import ConfigError

logger = logging.getLogger("static_server")


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) > 2 or any(a in ("-h", "--help") for a in args):
        print("Usage: python -m static_server [content_dir] [port]", file=sys.stderr)
        return 1

    try:
        config = load_config(argv=args)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {exc}")
        return 1

    logging.basicConfig(level=config.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.engine == "asgi":
        from .asgi import serve_asgi

        serve_asgi(config)
        return 0

    from .server import run_server

    server = run_server(config)

    def _shutdown(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down gracefully...")
        server.shutdown()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    host, port = server.server_address
    print(f"Static HTTP Server running on http://{host}:{port}")
    print(f"Serving files from: {config.webroot}")
    print("Press Ctrl+C to stop")
    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
