import logging

import pytest

from compat_bench.backend.collectors.local import LocalFileCollector
from compat_bench.backend.devices import Capability
from compat_bench.backend.devices.fake import FakeDevice
from compat_bench.models import CaseType, SuiteConfig, TestStatus
from ut_checks import FailingCollector

log = logging.getLogger(__name__)

BLE_CASES = [CaseType.BleSecureClientConnect]


class TestCompatRunner:
    def test_run(self, runner, tmp_path):
        suite = SuiteConfig(case_ids=BLE_CASES, suite_label="smoke", timeout=5)
        result = runner.run(suite, run_id="a1b2c3d4e5")

        assert result.status == TestStatus.PASS
        assert result.device["serial"] == "fake-0001"
        assert not runner.has_running()

        batches = LocalFileCollector(tmp_path).read_batches("a1b2c3d4e5")
        assert len(batches) == 1
        assert batches[0].keys() == [("BleSecureClientConnectCheck#BleSecureClientConnect", "arm64-v8a")]

        results = runner.get_results()
        assert [r.run_id for r in results] == ["a1b2c3d4e5"]

    def test_run_skips_missing_capabilities(self, runner):
        suite = SuiteConfig(
            case_ids=[CaseType.BleSecureClientConnect, CaseType.P2pServReqDnsPtr],
            device_config={"capabilities": {Capability.BLE}},
        )
        result = runner.run(suite)
        assert result.statuses() == [TestStatus.SKIPPED, TestStatus.SKIPPED]
        assert result.status == TestStatus.SKIPPED

    def test_run_filters(self, runner):
        suite = SuiteConfig(
            case_ids=[CaseType.BleSecureClientConnect, CaseType.P2pServReqDnsPtr],
            abi="x86_64",
            exclude_filters=["x86_64 P2pServReqDnsPtr"],
        )
        result = runner.run(suite)
        assert [r.case_id for r in result.results] == [CaseType.BleSecureClientConnect]
        assert result.results[0].abi == "x86_64"

    def test_retry(self, runner):
        suite = SuiteConfig(case_ids=BLE_CASES, suite_label="retry")
        first = runner.run(suite, device=FakeDevice(secure=False))
        assert first.status == TestStatus.FAIL
        assert first.retry_case_ids() == BLE_CASES

        merged = runner.retry(first.run_id[:8], device=FakeDevice())
        assert merged.retry_of == first.run_id
        assert merged.run_id != first.run_id
        assert merged.suite_label == "retry"
        assert merged.status == TestStatus.PASS
        assert len(merged.results) == len(first.results)

    def test_retry_unknown_run(self, runner):
        with pytest.raises(ValueError):
            runner.retry("nosuchrun")

    def test_flush_pending(self, runner):
        collector = FailingCollector(failures=10)
        suite = SuiteConfig(case_ids=BLE_CASES, max_flush_retry=0)
        result = runner.run(suite, collector=collector)

        assert result.test_status == TestStatus.PASS
        assert result.status == TestStatus.ERROR
        assert runner.latest_error is not None

        collector.failures = 0
        assert runner.flush_pending() is True
        assert runner.latest_error is None
        assert collector.keys() == [("BleSecureClientConnectCheck#BleSecureClientConnect", "arm64-v8a")]
