import logging
import pathlib
import uuid

from . import config
from .backend.assembler import Assembler
from .backend.collectors import CollectorType, HostCollector
from .backend.devices import DeviceChannel
from .backend.report_sink import ReportSink
from .backend.result_collector import ResultCollector
from .backend.task_runner import SuiteRunner
from .models import SuiteConfig, SuiteResult

log = logging.getLogger(__name__)


class CompatRunner:
    """Entry point for running suites, retrying failed runs and reading results"""

    def __init__(self, result_dir: pathlib.Path | None = None):
        self.result_dir = pathlib.Path(result_dir or config.RESULTS_LOCAL_DIR)
        self.running_suite: SuiteRunner | None = None
        self.latest_suite: SuiteRunner | None = None
        self.latest_error: str | None = None

    def _device(self, suite: SuiteConfig) -> DeviceChannel:
        return suite.device.init_cls(**suite.device_config)

    def _collector(self, suite: SuiteConfig) -> HostCollector:
        collector_config = dict(suite.collector_config)
        if suite.collector == CollectorType.Local:
            collector_config.setdefault("result_dir", self.result_dir)
        return suite.collector.init_cls(**collector_config)

    def run(
        self,
        suite: SuiteConfig,
        device: DeviceChannel | None = None,
        collector: HostCollector | None = None,
        run_id: str | None = None,
    ) -> SuiteResult:
        """run every configured case in order, write the result file and return it"""
        self.latest_error = None
        if self.running_suite is not None:
            msg = "There's still a suite running"
            raise RuntimeError(msg)

        run_id = run_id or uuid.uuid4().hex
        log.info(f"generated uuid for the suite: {run_id}")
        device = device or self._device(suite)
        collector = collector or self._collector(suite)
        log.debug(f"suite: {suite}, device: {device.serial}, collector: {collector.__class__.__name__}")

        sink = ReportSink(
            run_id,
            suite_label=suite.suite_label or run_id,
            collector=collector,
            abi=suite.abi,
            device_info=device.info(),
        )
        self.running_suite = Assembler.assemble_all(run_id, suite, device, sink)
        try:
            result = self.running_suite.run()
        finally:
            self.latest_suite = self.running_suite
            self.running_suite = None

        if result.report_error:
            self.latest_error = result.report_error
        result.display()
        result.write_file(self.result_dir)
        return result

    def retry(
        self,
        run_id: str,
        device: DeviceChannel | None = None,
        collector: HostCollector | None = None,
        suite: SuiteConfig | None = None,
    ) -> SuiteResult:
        """Re-run the cases of a previous run that failed, errored or never ran.

        The returned result holds every case of the previous run, with the
        retried ones replaced.
        """
        previous = ResultCollector.find(self.result_dir, run_id)
        case_ids = previous.retry_case_ids()
        log.info(f"Retrying run {previous.run_id}: {[c.name for c in case_ids]}")

        base = suite or SuiteConfig()
        retry_suite = base.model_copy(
            update={
                "case_ids": case_ids,
                "abi": previous.abi,
                "suite_label": previous.suite_label,
                "include_filters": [],
                "exclude_filters": [],
            },
        )
        if not case_ids:
            log.info(f"Nothing to retry in run {previous.run_id}")

        retried = self.run(retry_suite, device=device, collector=collector)
        by_case = {r.case_id: r for r in retried.results}
        merged = previous.model_copy(
            update={
                "run_id": retried.run_id,
                "results": [by_case.get(r.case_id, r) for r in previous.results],
                "start_time": retried.start_time,
                "end_time": retried.end_time,
                "report_error": retried.report_error,
                "retry_of": previous.run_id,
            },
        )
        merged.write_file(self.result_dir)
        return merged

    def flush_pending(self) -> bool:
        """flush again what the latest run could not deliver"""
        if self.latest_suite is None:
            return True
        delivered = self.latest_suite.flush()
        if delivered:
            self.latest_error = None
        if self.latest_suite.result is not None:
            self.latest_suite.result.write_file(self.result_dir)
        return delivered

    def stop_running(self) -> None:
        if self.running_suite is not None:
            self.running_suite.stop()

    def has_running(self) -> bool:
        return self.running_suite is not None

    def get_results(self, result_dir: pathlib.Path | None = None) -> list[SuiteResult]:
        """results of all runs, each SuiteResult represents one run"""
        return ResultCollector.collect(pathlib.Path(result_dir) if result_dir else self.result_dir)


compat_runner = CompatRunner()
