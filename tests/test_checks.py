import logging
import threading
import time

import pytest

from compat_bench.backend.cases import CaseType
from compat_bench.backend.checks import BleScanCheck, BleSecureClientConnectCheck, p2p
from compat_bench.backend.devices import Action, Capability
from compat_bench.backend.devices.fake import FakeDevice, FakeResponse
from compat_bench.backend.errors import FailureCause
from compat_bench.backend.result import TestStatus
from compat_bench.backend.task_runner import CaseRunner
from compat_bench.metric import CONNECT_LATENCY_METRIC, DISCOVERED_COUNT_METRIC, DISCOVERY_LATENCY_METRIC
from ut_checks import make_case

log = logging.getLogger(__name__)


def run_check(check, device, case_id=CaseType.BleScan, timeout=5.0):
    case = make_case(check, case_id, timeout=timeout)
    outcome = CaseRunner(case, device).run()
    log.info(f"{case.name}: {outcome.status.value} {outcome.message}")
    return case, outcome


class TestBleChecks:
    def test_secure_connect(self, device):
        case, outcome = run_check(BleSecureClientConnectCheck(), device, CaseType.BleSecureClientConnect)

        assert outcome.status == TestStatus.PASS
        assert case.report_log.metrics[CONNECT_LATENCY_METRIC].value >= 0
        assert device.requested(Action.BLE_DISCONNECT)

    def test_insecure_link(self):
        device = FakeDevice(secure=False)
        case, outcome = run_check(BleSecureClientConnectCheck(), device, CaseType.BleSecureClientConnect)

        assert outcome.status == TestStatus.FAIL
        assert outcome.cause == FailureCause.PROTOCOL_MISMATCH
        assert CONNECT_LATENCY_METRIC not in case.report_log.metrics
        assert device.requested(Action.BLE_DISCONNECT)

    def test_connect_refused(self, device):
        device.script(Action.BLE_CONNECT_SECURE, [FakeResponse(payload={"connected": False})])
        _, outcome = run_check(BleSecureClientConnectCheck(), device, CaseType.BleSecureClientConnect)

        assert outcome.cause == FailureCause.UNEXPECTED_RESPONSE
        assert not device.requested(Action.BLE_DISCONNECT)

    def test_connect_no_answer(self, device):
        device.script(Action.BLE_CONNECT_SECURE, [])
        _, outcome = run_check(
            BleSecureClientConnectCheck(connect_timeout=0.2),
            device,
            CaseType.BleSecureClientConnect,
        )
        assert outcome.cause == FailureCause.TIMED_OUT

    def test_secure_connect_needs_capability(self):
        device = FakeDevice(capabilities={Capability.BLE})
        _, outcome = run_check(BleSecureClientConnectCheck(), device, CaseType.BleSecureClientConnect)
        assert outcome.status == TestStatus.SKIPPED

    def test_scan(self, device):
        case, outcome = run_check(BleScanCheck(window=0.2), device)

        assert outcome.status == TestStatus.PASS
        assert case.report_log.metrics[DISCOVERED_COUNT_METRIC].value == 2.0

    def test_scan_nothing_found(self):
        device = FakeDevice(advertisers=[])
        _, outcome = run_check(BleScanCheck(window=0.2), device)
        assert outcome.cause == FailureCause.UNEXPECTED_RESPONSE

    def test_scan_malformed(self, device):
        device.script(Action.BLE_SCAN, [FakeResponse(payload={"rssi": -40})])
        _, outcome = run_check(BleScanCheck(window=0.2), device)
        assert outcome.cause == FailureCause.PROTOCOL_MISMATCH


def small_window(check: p2p.P2pServiceDiscoveryCheck) -> p2p.P2pServiceDiscoveryCheck:
    check.window = 0.2
    return check


class TestP2pChecks:
    @pytest.mark.parametrize(
        "factory, expected_count",
        [
            (p2p.all_services_check, 8),
            (p2p.dns_ptr_check, 1),
            (p2p.dns_txt_check, 1),
            (p2p.upnp_root_device_check, 2),
        ],
    )
    def test_reference_responder(self, device, factory, expected_count):
        case, outcome = run_check(small_window(factory()), device, CaseType.P2pServReqAll)

        assert outcome.status == TestStatus.PASS
        assert case.report_log.metrics[DISCOVERED_COUNT_METRIC].value == expected_count
        assert DISCOVERY_LATENCY_METRIC in case.report_log.metrics
        assert device.requested(Action.P2P_CLEAR_SERVICE_REQUESTS)

    def test_missing_service(self):
        services = [s for s in p2p.REFERENCE_SERVICES if s.name != p2p.UPNP_ROOT_DEVICE]
        device = FakeDevice(services=services)
        _, outcome = run_check(small_window(p2p.upnp_root_device_check()), device, CaseType.P2pServReqUpnp)

        assert outcome.status == TestStatus.FAIL
        assert outcome.cause == FailureCause.UNEXPECTED_RESPONSE
        assert "upnp mismatch" in outcome.message

    def test_unexpected_service(self, device):
        device.script(
            Action.P2P_DISCOVER_SERVICES,
            [
                FakeResponse(payload={"type": "dns_ptr", "name": p2p.IPP_SERVICE}),
                FakeResponse(payload={"type": "dns_ptr", "name": p2p.AFP_SERVICE}),
            ],
        )
        _, outcome = run_check(small_window(p2p.dns_ptr_check()), device, CaseType.P2pServReqDnsPtr)

        assert outcome.cause == FailureCause.UNEXPECTED_RESPONSE
        assert p2p.AFP_SERVICE in outcome.message

    def test_malformed_response(self, device):
        device.script(Action.P2P_DISCOVER_SERVICES, [FakeResponse(payload={"type": "bonjour"})])
        _, outcome = run_check(small_window(p2p.dns_ptr_check()), device, CaseType.P2pServReqDnsPtr)
        assert outcome.cause == FailureCause.PROTOCOL_MISMATCH

    def test_request_payload(self, device):
        run_check(small_window(p2p.dns_txt_check("peer-1")), device, CaseType.P2pServReqDnsTxt)
        assert device.requested(Action.P2P_DISCOVER_SERVICES) == [
            {"target": "peer-1", "requests": [{"type": "dns_txt", "query": "MyPrinter._ipp._tcp"}]},
        ]


class TestFakeDevice:
    def test_fired_timers_are_dropped(self, device):
        delivered = threading.Semaphore(0)
        for _ in range(20):
            device.request(Action.BLE_CONNECT_SECURE, {}, lambda r: delivered.release())
        for _ in range(20):
            assert delivered.acquire(timeout=2)

        time.sleep(0.2)
        device.request(Action.BLE_CONNECT_SECURE, {}, lambda r: delivered.release())
        assert delivered.acquire(timeout=2)
        assert device.timers(Action.BLE_CONNECT_SECURE) == 1

    def test_cancel_drops_pending_timers(self, device):
        answers = []
        device.script(Action.BLE_SCAN, [FakeResponse(payload={"address": "AA"}, delay=5)])
        device.request(Action.BLE_SCAN, {}, answers.append)
        assert device.timers(Action.BLE_SCAN) == 1

        device.cancel(Action.BLE_SCAN)
        assert device.timers(Action.BLE_SCAN) == 0
        assert answers == []
