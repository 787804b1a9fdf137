import logging
import threading
import time

from compat_bench.backend.cases import CaseType
from compat_bench.backend.devices import Action, Capability
from compat_bench.backend.devices.fake import FakeDevice
from compat_bench.backend.errors import FailureCause
from compat_bench.backend.report_sink import ReportSink
from compat_bench.backend.result import TestStatus
from compat_bench.backend.task_runner import CaseRunner, SuiteRunner
from compat_bench.models import RunnerState
from ut_checks import (
    BlockingCheck,
    BrokenCheck,
    DuplicateMetricCheck,
    FailingCheck,
    FailingCollector,
    RecordingCheck,
    SilentCheck,
    make_case,
)

log = logging.getLogger(__name__)


def new_suite(cases, device, collector, **kwargs) -> SuiteRunner:
    sink = ReportSink("run-1", suite_label="ut", collector=collector, device_info=device.info())
    return SuiteRunner(
        run_id="run-1",
        suite_label="ut",
        cases=cases,
        device=device,
        sink=sink,
        cancel_grace=0.5,
        flush_retry_interval=0,
        **kwargs,
    )


class TestCaseRunner:
    def test_pass(self, device):
        case = make_case(RecordingCheck())
        outcome = CaseRunner(case, device).run()

        assert outcome.status == TestStatus.PASS
        assert outcome.message == "recorded"
        assert outcome.duration >= 0
        assert case.completed

    def test_fail(self, device):
        case = make_case(FailingCheck())
        outcome = CaseRunner(case, device).run()

        assert outcome.status == TestStatus.FAIL
        assert outcome.cause == FailureCause.UNEXPECTED_RESPONSE
        assert "peer answered garbage" in outcome.message
        assert "CaseFailure" in outcome.stack_trace

    def test_duplicate_metric_is_error(self, device):
        case = make_case(DuplicateMetricCheck())
        outcome = CaseRunner(case, device).run()

        assert outcome.status == TestStatus.ERROR
        assert "latency" in outcome.message
        assert case.cleanup_count == 1

    def test_unexpected_exception_is_error(self, device):
        case = make_case(BrokenCheck())
        outcome = CaseRunner(case, device).run()

        assert outcome.status == TestStatus.ERROR
        assert outcome.message.startswith("KeyError")
        assert device.held() == set()

    def test_timeout(self):
        device = FakeDevice()
        device.script(Action.BLE_SCAN, [])
        check = SilentCheck()
        case = make_case(check, timeout=0.3)

        start = time.perf_counter()
        outcome = CaseRunner(case, device, cancel_grace=1.0).run()
        log.info(f"timeout outcome: {outcome.message}, took {time.perf_counter() - start}s")

        assert outcome.status == TestStatus.FAIL
        assert outcome.cause == FailureCause.TIMED_OUT
        assert case.cleanup_count == 1
        assert check.released == 1
        assert device.held() == set()

    def test_timeout_check_ignores_cancellation(self, device):
        check = BlockingCheck()
        case = make_case(check, timeout=0.2)
        try:
            start = time.perf_counter()
            outcome = CaseRunner(case, device, cancel_grace=0.2).run()
            took = time.perf_counter() - start
            log.info(f"abandoned worker outcome: {outcome.message}, took {took}s")

            assert outcome.status == TestStatus.FAIL
            assert outcome.cause == FailureCause.TIMED_OUT
            assert took < 5
            assert case.cleanup_count == 1
            assert device.held() == set()

            workers = [t for t in threading.enumerate() if t.name == "case-BleScan" and t.is_alive()]
            assert workers
            assert all(t.daemon for t in workers)
        finally:
            check.unblock.set()

    def test_skip(self):
        device = FakeDevice(capabilities={Capability.BLE})
        case = make_case(RecordingCheck(capabilities={Capability.WIFI_P2P}))
        outcome = CaseRunner(case, device).run()

        assert outcome.status == TestStatus.SKIPPED
        assert case.report_log is None
        assert case.cleanup_count == 1


class TestSuiteRunner:
    def test_pass_fail_skip(self, collector):
        device = FakeDevice(capabilities={Capability.BLE})
        cases = [
            make_case(RecordingCheck({"a": 1}), CaseType.BleScan),
            make_case(FailingCheck({"b": 2}), CaseType.BleSecureClientConnect),
            make_case(RecordingCheck({"c": 3}, capabilities={Capability.WIFI_P2P}), CaseType.P2pServReqAll),
        ]
        suite = new_suite(cases, device, collector)
        result = suite.run()

        assert suite.state == RunnerState.DONE
        assert result.statuses() == [TestStatus.PASS, TestStatus.FAIL, TestStatus.SKIPPED]
        assert result.status == TestStatus.FAIL
        assert result.count(TestStatus.PASS) == 1
        assert result.count(TestStatus.SKIPPED) == 1
        assert result.report_error is None

        assert collector.keys() == [
            ("RecordingCheck#BleScan", "arm64-v8a"),
            ("FailingCheck#BleSecureClientConnect", "arm64-v8a"),
        ]
        assert result.get(CaseType.BleSecureClientConnect).metrics == {"b": 2.0}
        assert result.get(CaseType.P2pServReqAll).metrics == {}
        assert suite.num_finished() == 3

    def test_one_outcome_per_case(self, device, collector):
        cases = [
            make_case(RecordingCheck(), CaseType.BleScan),
            make_case(BrokenCheck(), CaseType.BleSecureClientConnect),
            make_case(DuplicateMetricCheck(), CaseType.P2pServReqDnsPtr),
        ]
        result = new_suite(cases, device, collector).run()

        assert len(result.results) == len(cases)
        assert result.status == TestStatus.ERROR
        assert all(c.cleanup_count == 1 for c in cases)

    def test_timeout_then_continue(self, collector):
        device = FakeDevice()
        device.script(Action.BLE_SCAN, [])
        cases = [
            make_case(SilentCheck(), CaseType.BleScan, timeout=0.3),
            make_case(RecordingCheck(), CaseType.BleSecureClientConnect),
        ]
        suite = new_suite(cases, device, collector)
        result = suite.run()

        assert suite.state == RunnerState.DONE
        assert result.get(CaseType.BleScan).outcome.cause == FailureCause.TIMED_OUT
        assert result.get(CaseType.BleSecureClientConnect).status == TestStatus.PASS
        assert device.held() == set()

    def test_empty_suite(self, device, collector):
        suite = new_suite([], device, collector)
        result = suite.run()

        assert suite.state == RunnerState.DONE
        assert result.status == TestStatus.PASS
        assert collector.batches == []

    def test_flush_retry(self, device):
        collector = FailingCollector(failures=1)
        suite = new_suite([make_case(RecordingCheck())], device, collector, max_flush_retry=2)
        result = suite.run()

        assert collector.attempts == 2
        assert result.report_error is None
        assert result.status == TestStatus.PASS

    def test_flush_failure_keeps_results(self, device):
        collector = FailingCollector(failures=3)
        suite = new_suite([make_case(RecordingCheck())], device, collector, max_flush_retry=1)
        result = suite.run()

        assert suite.state == RunnerState.DONE
        assert result.test_status == TestStatus.PASS
        assert result.status == TestStatus.ERROR
        assert "collector unreachable" in result.report_error
        assert suite.sink.has_unsent()

        assert suite.flush() is True
        assert result.report_error is None
        assert result.status == TestStatus.PASS
        assert collector.keys() == [("RecordingCheck#BleScan", "arm64-v8a")]

    def test_check_ignoring_cancellation_does_not_hang_suite(self, device, collector):
        check = BlockingCheck()
        cases = [
            make_case(check, CaseType.BleScan, timeout=0.2),
            make_case(RecordingCheck(), CaseType.BleSecureClientConnect),
        ]
        suite = new_suite(cases, device, collector)
        try:
            result = suite.run()

            assert suite.state == RunnerState.DONE
            assert result.get(CaseType.BleScan).outcome.cause == FailureCause.TIMED_OUT
            assert cases[0].cleanup_count == 1
            assert result.get(CaseType.BleSecureClientConnect).status == TestStatus.PASS
        finally:
            check.unblock.set()
