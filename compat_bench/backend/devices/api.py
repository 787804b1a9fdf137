from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

from ...base import BaseModel


class Capability(str, Enum):
    """Hardware/platform features a test case may require"""

    BLE = "ble"
    BLE_SECURE_CONNECT = "ble_secure_connect"
    WIFI_P2P = "wifi_p2p"
    WIFI_P2P_SERVICE_DISCOVERY = "wifi_p2p_service_discovery"


class Action(str, Enum):
    """Requests a test case can send to the device"""

    BLE_CONNECT_SECURE = "ble.connect_secure"
    BLE_DISCONNECT = "ble.disconnect"
    BLE_SCAN = "ble.scan"
    P2P_DISCOVER_SERVICES = "p2p.discover_services"
    P2P_CLEAR_SERVICE_REQUESTS = "p2p.clear_service_requests"


class Response(BaseModel):
    """An asynchronous answer to a request. A request may get zero, one, or many."""

    action: Action
    payload: dict = {}
    error: str | None = None


ResponseCallback = Callable[[Response], None]


class DeviceBusyError(RuntimeError):
    def __init__(self, serial: str, capability: Capability):
        super().__init__(f"{capability.value} on device {serial} is held by another test")


class DeviceChannel(ABC):
    """Request/response channel to a device under test.

    Radios are exclusive: a test case acquires the capabilities it needs before
    executing and releases them in cleanup.

    Examples:
        >>> device.acquire(Capability.BLE)
        >>> device.request(Action.BLE_SCAN, {"window": 5}, callback)
        >>> device.release(Capability.BLE)
    """

    serial: str = ""

    @abstractmethod
    def capabilities(self) -> set[Capability]:
        raise NotImplementedError

    @abstractmethod
    def acquire(self, capability: Capability) -> None:
        """Take the exclusive handle, raise DeviceBusyError if it is already held"""
        raise NotImplementedError

    @abstractmethod
    def release(self, capability: Capability) -> None:
        raise NotImplementedError

    @abstractmethod
    def request(self, action: Action, payload: dict, callback: ResponseCallback) -> None:
        """Send a request without waiting. Responses, if any, arrive later
        through the callback, possibly on another thread."""
        raise NotImplementedError

    def cancel(self, action: Action) -> None:  # noqa: B027
        """Drop pending responses of an action, if the device supports it"""

    def reset(self, capability: Capability) -> None:  # noqa: B027
        """Power-cycle the radio behind a capability, if the device supports it"""

    def missing(self, required: set[Capability]) -> set[Capability]:
        return set(required) - self.capabilities()

    def info(self) -> dict:
        return {
            "serial": self.serial,
            "capabilities": sorted(c.value for c in self.capabilities()),
        }
