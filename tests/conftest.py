import os
import threading
import time

import pytest

from static_server.config import ServerConfig
from static_server.server import StaticHTTPServer

INDEX_BODY = b"<html>Index!</html>\n"  # 20 bytes
FIXED_MTIME = 1_700_000_000.5


def _write(path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


@pytest.fixture
def webroot(tmp_path):
    root = tmp_path / "public"
    root.mkdir()
    _write(root / "index.html", INDEX_BODY)
    _write(root / "test.html", b"<html><body>Test HTML</body></html>")
    _write(root / "test.css", b"body { color: red; }")
    _write(root / "test.txt", b"Plain text file")
    _write(root / "file.test.txt", b"test content")
    _write(root / "UPPER.PNG", b"\x89PNG\r\n\x1a\n")
    _write(root / "data.unknownext", b"\x00\x01\x02")
    _write(root / "subdir" / "index.html", b"<html><body>Subdir Index</body></html>")
    _write(root / "big.bin", os.urandom(1024 * 1024 + 123))
    (root / "empty").mkdir()
    os.utime(root / "test.html", (FIXED_MTIME, FIXED_MTIME))
    return root


class RecordingSink:
    def __init__(self):
        self.records = []
        self._lock = threading.Lock()

    def __call__(self, record):
        with self._lock:
            self.records.append(record)

    def wait_for(self, count: int, timeout: float = 5.0):
        deadline = time.time() + timeout
        while time.time() < deadline:
            with self._lock:
                if len(self.records) >= count:
                    return list(self.records)
            time.sleep(0.01)
        raise AssertionError(f"expected {count} access records, got {len(self.records)}")


class RunningServer:
    def __init__(self, server: StaticHTTPServer, sink: RecordingSink):
        self.server = server
        self.sink = sink
        self.host, self.port = server.server_address

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def url(self, path: str) -> str:
        return self.base_url + path


@pytest.fixture
def server(webroot):
    config = ServerConfig(webroot=str(webroot), host="127.0.0.1", port=0, max_threads=8)
    sink = RecordingSink()
    httpd = StaticHTTPServer(config, access_log=sink)
    httpd.start()
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield RunningServer(httpd, sink)
    finally:
        httpd.shutdown()
        thread.join(timeout=10)
