from enum import Enum

from .api import HostCollector, ReportBatch, host_info

__all__ = [
    "CollectorType",
    "HostCollector",
    "ReportBatch",
    "host_info",
]


class CollectorType(Enum):
    """Where flushed report logs go

    Examples:
        >>> CollectorType.Local.init_cls
        <class 'compat_bench.backend.collectors.local.LocalFileCollector'>
    """

    Local = "local"
    Http = "http"

    @property
    def init_cls(self) -> type[HostCollector]:
        """Import while in use"""
        if self == CollectorType.Local:
            from .local import LocalFileCollector

            return LocalFileCollector

        if self == CollectorType.Http:
            from .http import HttpCollector

            return HttpCollector

        msg = f"Unknown collector type: {self.name}"
        raise ValueError(msg)
