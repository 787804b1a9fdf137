import logging

from .. import config
from ..metric import MetricReportLog, ResultType, ResultUnit
from .collectors import HostCollector, ReportBatch, host_info
from .errors import TransportError

log = logging.getLogger(__name__)


class _Entry:
    def __init__(self, report_log: MetricReportLog):
        self.report_log = report_log
        self.sent = False


class ReportSink:
    """Accumulates the report logs of one suite run and ships them to a host collector.

    Logs are keyed by (test_id, abi). ``begin_test`` is the explicit new-test
    boundary: recording a metric name twice for one test without it raises
    DuplicateMetricError.

    ``flush`` sends only unsent logs. A failed flush leaves them unsent, so
    flushing again is all a retry takes; a flush with nothing new is a no-op.

    Examples:
        >>> sink = ReportSink("run-1", collector=LocalFileCollector())
        >>> sink.record("BleScanCheck#BleScan", "discovered_count", 2, ResultUnit.COUNT)
        >>> sink.flush()
    """

    def __init__(
        self,
        run_id: str,
        suite_label: str = "",
        collector: HostCollector | None = None,
        abi: str = config.DEFAULT_ABI,
        device_info: dict | None = None,
    ):
        self.run_id = run_id
        self.suite_label = suite_label
        self.collector = collector
        self.abi = abi
        self.device_info = device_info or {}
        self._entries: dict[tuple[str, str], _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _key(self, test_id: str, abi: str | None) -> tuple[str, str]:
        return (str(test_id), abi or self.abi)

    def begin_test(self, test_id: str, abi: str | None = None) -> MetricReportLog:
        key = self._key(test_id, abi)
        if key in self._entries and not self._entries[key].sent:
            log.warning(f"unsent report log of {key} is replaced by a new test boundary")
        report_log = MetricReportLog(test_id=key[0], abi=key[1])
        self._entries[key] = _Entry(report_log)
        return report_log

    def record(
        self,
        test_id: str,
        metric_name: str,
        value: float,
        unit: ResultUnit = ResultUnit.NONE,
        result_type: ResultType = ResultType.NEUTRAL,
        abi: str | None = None,
    ) -> None:
        """Add one metric to the current log of the test.

        A log already frozen by ``submit`` or ``flush`` is continued in a reopened
        copy, so the next flush sends the whole log again under a new log_id.

        Raises:
            DuplicateMetricError: the metric was recorded since the last ``begin_test``
        """
        key = self._key(test_id, abi)
        entry = self._entries.get(key)
        if entry is None:
            self.begin_test(*key).add_value(metric_name, value, unit, result_type)
        elif entry.report_log.frozen:
            report_log = entry.report_log.reopen()
            report_log.add_value(metric_name, value, unit, result_type)
            self._entries[key] = _Entry(report_log)
        else:
            entry.report_log.add_value(metric_name, value, unit, result_type)

    def submit(self, report_log: MetricReportLog) -> None:
        """take over a log a finished test produced"""
        if report_log.is_empty():
            log.debug(f"report log of {report_log.test_id} recorded nothing, dropped")
            return
        key = self._key(report_log.test_id, report_log.abi)
        if key in self._entries and not self._entries[key].sent:
            log.warning(f"unsent report log of {key} is replaced")
        self._entries[key] = _Entry(report_log.freeze())

    def get(self, test_id: str, abi: str | None = None) -> MetricReportLog | None:
        entry = self._entries.get(self._key(test_id, abi))
        return entry.report_log if entry else None

    def logs(self) -> list[MetricReportLog]:
        return [e.report_log for e in self._entries.values()]

    def unsent(self) -> list[MetricReportLog]:
        return [e.report_log for e in self._entries.values() if not e.sent]

    def has_unsent(self) -> bool:
        return any(not e.sent for e in self._entries.values())

    def flush(self, collector: HostCollector | None = None) -> int:
        """Send all unsent logs as one batch.

        Returns:
            int: number of logs sent, 0 when there was nothing new to send

        Raises:
            TransportError: the collector did not take the batch, logs stay unsent
        """
        collector = collector or self.collector
        if collector is None:
            msg = "no host collector to flush into"
            raise TransportError(msg)

        pending = [(k, e) for k, e in self._entries.items() if not e.sent]
        if not pending:
            log.debug(f"nothing new to flush for run {self.run_id}")
            return 0

        batch = ReportBatch(
            run_id=self.run_id,
            suite_label=self.suite_label,
            host=host_info(),
            device=self.device_info,
            logs=[e.report_log.freeze() for _, e in pending],
        )
        collector.flush(batch)

        for _, e in pending:
            e.sent = True
        log.info(f"flushed {len(pending)} report logs of run {self.run_id} to {collector.__class__.__name__}")
        return len(pending)
