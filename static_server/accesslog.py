import logging
from datetime import datetime, timezone
from typing import Callable, NamedTuple

access_logger = logging.getLogger("static_server.access")


class AccessRecord(NamedTuple):
    timestamp: datetime
    remote_addr: str
    method: str
    target: str
    status: int
    bytes_sent: int

    @classmethod
    def now(cls, remote_addr: str, method: str, target: str, status: int, bytes_sent: int) -> "AccessRecord":
        return cls(datetime.now(timezone.utc), remote_addr, method, target, status, bytes_sent)

    def format(self) -> str:
        # timestamp | remote_ip | method | path | status | bytes_sent
        ts = self.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return f"{ts} | {self.remote_addr} | {self.method} | {self.target} | {self.status} | {self.bytes_sent}"


AccessLogSink = Callable[[AccessRecord], None]


def log_access(record: AccessRecord) -> None:
    access_logger.info(record.format())
