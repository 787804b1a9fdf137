import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from enum import Enum

from pydantic import Field, PrivateAttr

from .. import config
from ..base import BaseModel
from ..metric import MetricReportLog
from . import utils
from .checks import BleScanCheck, BleSecureClientConnectCheck, Check, CheckContext
from .checks import p2p
from .devices import Capability, DeviceChannel
from .errors import CaseAlreadyExecutedError, SkipCase
from .result import Outcome, TestIdentifier

log = logging.getLogger(__name__)


class CaseType(Enum):
    """
    Example:
        >>> case = CaseType.P2pServReqDnsPtr.case(abi="x86_64")
        >>> CaseType.P2pServReqDnsPtr.case_name
        'WiFi P2P Service Request (DNS PTR)'
    """

    BleSecureClientConnect = 1
    BleScan = 2

    P2pServReqAll = 10
    P2pServReqDnsPtr = 11
    P2pServReqDnsTxt = 12
    P2pServReqUpnp = 13

    def case(self, abi: str = config.DEFAULT_ABI, timeout: float | None = None) -> "TestCase":
        registered = type2case.get(self)
        if registered is None:
            msg = f"Case unsupported: {self.name}"
            raise ValueError(msg)
        return TestCase(
            case_id=self,
            name=registered["name"],
            description=registered["description"],
            check=registered["check"](),
            abi=abi,
            timeout=timeout if timeout is not None else config.TEST_TIMEOUT_IN_SECONDS,
        )

    @property
    def case_name(self) -> str:
        return type2case[self]["name"]


class TestCase(BaseModel):
    """One unit of compliance work: prepare, execute once, cleanup.

    Fields:
        case_id(CaseType): which registered case this is.
        name(str): display name.
        check(Check): the concrete work, talks to the device through a CheckContext.
        abi(str): abi the case runs under, part of the metric key.
        timeout(float): bound of execute in seconds, enforced by the runner.
        outcome(Outcome): filled once by ``complete``, immutable afterwards.
        report_log(MetricReportLog | None): created by execute, frozen at completion.
    """

    __test__ = False

    case_id: CaseType
    name: str
    description: str = ""
    check: Check
    abi: str = config.DEFAULT_ABI
    timeout: float = config.TEST_TIMEOUT_IN_SECONDS

    outcome: Outcome = Field(default_factory=Outcome)
    report_log: MetricReportLog | None = None

    _device: DeviceChannel | None = PrivateAttr(default=None)
    _acquired: list[Capability] = PrivateAttr(default_factory=list)
    _executed: bool = PrivateAttr(default=False)
    _cleanup_count: int = PrivateAttr(default=0)

    @property
    def capabilities(self) -> frozenset[Capability]:
        return self.check.required_capabilities

    @property
    def test_id(self) -> TestIdentifier:
        return TestIdentifier(class_name=self.check.__class__.__name__, method=self.case_id.name)

    @property
    def abi_id(self) -> str:
        return utils.create_abi_id(self.abi, self.case_id.name)

    @property
    def completed(self) -> bool:
        return self.outcome.end_time is not None

    @property
    def cleanup_count(self) -> int:
        return self._cleanup_count

    def prepare(self, device: DeviceChannel) -> None:
        """Acquire the capabilities this case needs.

        Raises:
            SkipCase: the device lacks a required capability
        """
        self._device = device
        missing = device.missing(set(self.capabilities))
        if missing:
            reason = f"device {device.serial} lacks {', '.join(sorted(c.value for c in missing))}"
            raise SkipCase(reason)

        for capability in sorted(self.capabilities, key=lambda c: c.value):
            device.acquire(capability)
            self._acquired.append(capability)

    def execute(self, cancel_event: threading.Event | None = None) -> str:
        if self._executed:
            raise CaseAlreadyExecutedError(self.name)
        if self._device is None:
            msg = f"{self.name} executed before prepare"
            raise RuntimeError(msg)
        self._executed = True

        self.report_log = MetricReportLog(test_id=str(self.test_id), abi=self.abi)
        ctx = CheckContext(self._device, self.report_log, cancel_event or threading.Event())
        message = self.check.run(ctx)
        if message and self.report_log.summary is None:
            self.report_log.set_summary(message)
        return message

    def cleanup(self) -> None:
        """Release everything prepare and execute took, on every exit path"""
        self._cleanup_count += 1
        device = self._device
        if device is None:
            return

        try:
            self.check.release(device)
            if self.check.reset_radio_after_test:
                for capability in self._acquired:
                    device.reset(capability)
        finally:
            while self._acquired:
                device.release(self._acquired.pop())
            self._device = None

    @contextmanager
    def session(self, device: DeviceChannel) -> Generator["TestCase", None, None]:
        """pair prepare with cleanup

        Examples:
            >>> with case.session(device):
            >>>     case.execute()
        """
        try:
            self.prepare(device)
            yield self
        finally:
            self.cleanup()

    def complete(self, outcome: Outcome) -> None:
        if self.completed:
            raise CaseAlreadyExecutedError(self.name)
        self.outcome = outcome
        if self.report_log is not None:
            self.report_log.freeze()


type2case: dict[CaseType, dict[str, str | Callable[[], Check]]] = {
    CaseType.BleSecureClientConnect: {
        "name": "BLE Secure Client Connect",
        "description": """Connects to the reference peripheral with an encrypted link and reports
        the connect latency. The bluetooth radio is reset after the test.""",
        "check": BleSecureClientConnectCheck,
    },
    CaseType.BleScan: {
        "name": "BLE Scan",
        "description": "Scans for advertisements and reports the number of advertisers found.",
        "check": BleScanCheck,
    },
    CaseType.P2pServReqAll: {
        "name": "WiFi P2P Service Request (All)",
        "description": "Requests every service type from the responder and expects all registered services.",
        "check": p2p.all_services_check,
    },
    CaseType.P2pServReqDnsPtr: {
        "name": "WiFi P2P Service Request (DNS PTR)",
        "description": "Searches the Bonjour ipp service, expects the ipp PTR record only.",
        "check": p2p.dns_ptr_check,
    },
    CaseType.P2pServReqDnsTxt: {
        "name": "WiFi P2P Service Request (DNS TXT)",
        "description": "Searches the ipp TXT record, expects the TXT record only.",
        "check": p2p.dns_txt_check,
    },
    CaseType.P2pServReqUpnp: {
        "name": "WiFi P2P Service Request (UPnP)",
        "description": "Searches UPnP root devices, expects the root device services only.",
        "check": p2p.upnp_root_device_check,
    },
}
