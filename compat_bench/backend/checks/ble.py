import logging

from ...metric import (
    CONNECT_LATENCY_METRIC,
    DISCOVERED_COUNT_METRIC,
    FIRST_RESULT_LATENCY_METRIC,
    ResultType,
    ResultUnit,
)
from ..devices.api import Action, Capability, DeviceChannel
from ..errors import CaseFailure, FailureCause
from ..utils import ms_since
from .api import Check, CheckContext

log = logging.getLogger(__name__)


class BleSecureClientConnectCheck(Check):
    """Connect to the reference peripheral over an encrypted link.

    The device answers ``ble.connect_secure`` with ``{"connected": bool, "secure": bool}``.
    A connection that comes up without encryption is a protocol mismatch.
    """

    name = "BLE secure client connect"
    required_capabilities = frozenset({Capability.BLE, Capability.BLE_SECURE_CONNECT})
    reset_radio_after_test = True

    def __init__(self, target: str = "", connect_timeout: float = 10.0):
        self.target = target
        self.connect_timeout = connect_timeout
        self._connected = False

    def run(self, ctx: CheckContext) -> str:
        pending = ctx.request(Action.BLE_CONNECT_SECURE, {"target": self.target})
        response = ctx.wait_for(pending, timeout=self.connect_timeout)
        latency = ms_since(pending.sent_at)

        if response.error:
            raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, f"connect failed: {response.error}")
        if not response.payload.get("connected", False):
            raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, "peripheral refused the connection")
        self._connected = True
        if not response.payload.get("secure", False):
            raise CaseFailure(FailureCause.PROTOCOL_MISMATCH, "link is up but not encrypted")

        ctx.report_log.add_value(
            CONNECT_LATENCY_METRIC,
            latency,
            ResultUnit.MS,
            ResultType.LOWER_BETTER,
            source=self.__class__.__name__,
        )
        return f"secure connection established in {latency}ms"

    def release(self, device: DeviceChannel) -> None:
        if self._connected:
            log.debug(f"disconnecting from {self.target or 'peripheral'}")
            device.request(Action.BLE_DISCONNECT, {"target": self.target}, lambda _: None)
            self._connected = False


class BleScanCheck(Check):
    """Scan for advertisements for ``window`` seconds, expect at least ``min_devices``."""

    name = "BLE scan"
    required_capabilities = frozenset({Capability.BLE})

    def __init__(self, window: float = 5.0, min_devices: int = 1):
        self.window = window
        self.min_devices = min_devices

    def run(self, ctx: CheckContext) -> str:
        pending = ctx.request(Action.BLE_SCAN, {"window": self.window})
        got = ctx.collect(pending, self.window)

        addresses = []
        for _, response in got:
            if response.error:
                raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, f"scan failed: {response.error}")
            if "address" not in response.payload:
                raise CaseFailure(FailureCause.PROTOCOL_MISMATCH, f"advertisement without address: {response.payload}")
            if response.payload["address"] not in addresses:
                addresses.append(response.payload["address"])

        if len(addresses) < self.min_devices:
            msg = f"found {len(addresses)} advertisers, expected at least {self.min_devices}"
            raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, msg)

        ctx.report_log.add_value(
            DISCOVERED_COUNT_METRIC,
            len(addresses),
            ResultUnit.COUNT,
            ResultType.HIGHER_BETTER,
            source=self.__class__.__name__,
        )
        ctx.report_log.add_value(
            FIRST_RESULT_LATENCY_METRIC,
            got[0][0],
            ResultUnit.MS,
            ResultType.LOWER_BETTER,
            source=self.__class__.__name__,
        )
        return f"found {len(addresses)} advertisers"

    def release(self, device: DeviceChannel) -> None:
        device.cancel(Action.BLE_SCAN)
