import platform
from abc import ABC, abstractmethod
from datetime import datetime

import psutil
from pydantic import Field

from ...base import BaseModel
from ...metric import MetricReportLog


def host_info() -> dict:
    """environment of the host that drove the run"""
    mem = psutil.virtual_memory()
    return {
        "hostname": platform.node(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "cpu_count": psutil.cpu_count(logical=True),
        "memory_total": mem.total,
    }


class ReportBatch(BaseModel):
    """Everything one flush transmits, keyed per log by (test class#method, abi)"""

    run_id: str
    suite_label: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    host: dict = Field(default_factory=dict)
    device: dict = Field(default_factory=dict)
    logs: list[MetricReportLog] = []

    def keys(self) -> list[tuple[str, str]]:
        return [(r.test_id, r.abi) for r in self.logs]


class HostCollector(ABC):
    """Receiver of report batches.

    ``flush`` either accepts the whole batch or raises TransportError; a failed
    batch can be flushed again.
    """

    @abstractmethod
    def flush(self, batch: ReportBatch) -> None:
        raise NotImplementedError
