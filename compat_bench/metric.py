import logging
import uuid
from enum import Enum

import numpy as np
from pydantic import Field

from .backend.errors import DuplicateMetricError, FrozenReportLogError
from .base import BaseModel

log = logging.getLogger(__name__)


class ResultType(str, Enum):
    """How a reader should compare the metric across runs"""

    HIGHER_BETTER = "higher_better"
    LOWER_BETTER = "lower_better"
    NEUTRAL = "neutral"
    WARNING = "warning"


class ResultUnit(str, Enum):
    NONE = "none"
    MS = "ms"
    SECOND = "s"
    COUNT = "count"
    SCORE = "score"
    BYTE = "byte"
    FPS = "fps"
    HZ = "hz"
    PERCENT = "%"


class Aggregation(str, Enum):
    """How a series of samples collapses into the reported value"""

    NONE = "none"
    MIN = "min"
    MAX = "max"
    MEAN = "mean"
    MEDIAN = "median"
    P95 = "p95"
    P99 = "p99"
    SUM = "sum"

    def apply(self, values: list[float]) -> float | None:
        if not values:
            return None
        if self == Aggregation.NONE:
            return float(values[-1])
        if self == Aggregation.MIN:
            return float(np.min(values))
        if self == Aggregation.MAX:
            return float(np.max(values))
        if self == Aggregation.MEAN:
            return float(np.mean(values))
        if self == Aggregation.MEDIAN:
            return float(np.median(values))
        if self == Aggregation.P95:
            return float(np.percentile(values, 95))
        if self == Aggregation.P99:
            return float(np.percentile(values, 99))
        return float(np.sum(values))


class MetricValue(BaseModel):
    """one named metric: the raw samples plus how to read them"""

    values: list[float]
    unit: ResultUnit = ResultUnit.NONE
    result_type: ResultType = ResultType.NEUTRAL
    aggregation: Aggregation = Aggregation.NONE
    source: str = ""

    @property
    def value(self) -> float | None:
        return self.aggregation.apply(self.values)


SUMMARY_METRIC = "summary"
CONNECT_LATENCY_METRIC = "connect_latency"
FIRST_RESULT_LATENCY_METRIC = "first_result_latency"
DISCOVERED_COUNT_METRIC = "discovered_count"
DISCOVERY_LATENCY_METRIC = "discovery_latency"


class MetricReportLog(BaseModel):
    """Measured results of one test, keyed by ``class#method`` and abi.

    Created when a test starts recording, written only by that test, frozen when
    the test completes and handed over to the ReportSink.
    ``log_id`` tells apart two logs of the same test, a collector keeps the one
    it received last.

    Examples:
        >>> report = MetricReportLog(test_id="BleScanCheck#scan", abi="arm64-v8a")
        >>> report.add_value("discovered_count", 3, ResultUnit.COUNT, ResultType.HIGHER_BETTER)
        >>> report.metrics["discovered_count"].value
        3.0
    """

    test_id: str
    abi: str
    log_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    metrics: dict[str, MetricValue] = {}
    summary: str | None = None
    frozen: bool = False

    def _check_writable(self, name: str):
        if self.frozen:
            raise FrozenReportLogError(self.test_id)
        if name in self.metrics or (name == SUMMARY_METRIC and self.summary is not None):
            raise DuplicateMetricError(self.test_id, name)

    def add_value(
        self,
        name: str,
        value: float,
        unit: ResultUnit = ResultUnit.NONE,
        result_type: ResultType = ResultType.NEUTRAL,
        source: str = "",
    ) -> None:
        self._check_writable(name)
        self.metrics[name] = MetricValue(
            values=[float(value)],
            unit=unit,
            result_type=result_type,
            source=source,
        )

    def add_values(
        self,
        name: str,
        values: list[float],
        unit: ResultUnit = ResultUnit.NONE,
        result_type: ResultType = ResultType.NEUTRAL,
        aggregation: Aggregation = Aggregation.MEAN,
        source: str = "",
    ) -> None:
        self._check_writable(name)
        if not values:
            msg = f"no samples given for metric {name!r} of {self.test_id}"
            raise ValueError(msg)
        self.metrics[name] = MetricValue(
            values=[float(v) for v in values],
            unit=unit,
            result_type=result_type,
            aggregation=aggregation,
            source=source,
        )

    def set_summary(self, summary: str) -> None:
        self._check_writable(SUMMARY_METRIC)
        self.summary = summary

    def freeze(self) -> "MetricReportLog":
        self.frozen = True
        return self

    def reopen(self) -> "MetricReportLog":
        """a writable successor holding what was recorded so far, under a new log_id"""
        return MetricReportLog(
            test_id=self.test_id,
            abi=self.abi,
            metrics=dict(self.metrics),
            summary=self.summary,
        )

    def is_empty(self) -> bool:
        return not self.metrics and self.summary is None

    def to_row(self) -> dict:
        """flattened metric name -> aggregated value"""
        return {name: m.value for name, m in self.metrics.items()}
