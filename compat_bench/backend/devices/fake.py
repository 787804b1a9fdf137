import logging
import threading
from collections import Counter, deque

from ...base import BaseModel
from ..checks.p2p import REFERENCE_SERVICES, Service, ServiceRequest
from .api import Action, Capability, DeviceBusyError, DeviceChannel, Response, ResponseCallback

log = logging.getLogger(__name__)

DEFAULT_ADVERTISERS = ["00:1A:7D:DA:71:13", "00:1A:7D:DA:71:14"]


class FakeResponse(BaseModel):
    payload: dict = {}
    error: str | None = None
    delay: float = 0.0


class FakeDevice(DeviceChannel):
    """Simulated device under test, answering like the reference peers would.

    Responses are delivered from timer threads, like radio callbacks. ``script``
    overrides the answer to the next request of an action; an empty script
    leaves the request unanswered.

    Examples:
        >>> device = FakeDevice(capabilities={Capability.BLE})
        >>> device.script(Action.BLE_SCAN, [])  # the next scan never answers
    """

    def __init__(
        self,
        serial: str = "fake-0001",
        capabilities: set[Capability] | None = None,
        services: list[Service] | None = None,
        advertisers: list[str] | None = None,
        secure: bool = True,
        response_delay: float = 0.0,
    ):
        self.serial = serial
        self._capabilities = set(Capability) if capabilities is None else set(capabilities)
        self.services = REFERENCE_SERVICES if services is None else services
        self.advertisers = DEFAULT_ADVERTISERS if advertisers is None else advertisers
        self.secure = secure
        self.response_delay = response_delay

        self.requests: list[tuple[Action, dict]] = []
        self.acquire_count: Counter[Capability] = Counter()
        self.release_count: Counter[Capability] = Counter()
        self.reset_count: Counter[Capability] = Counter()

        self._held: set[Capability] = set()
        self._scripts: dict[Action, deque[list[FakeResponse]]] = {}
        self._timers: dict[Action, list[threading.Timer]] = {}
        self._lock = threading.Lock()

    def capabilities(self) -> set[Capability]:
        return set(self._capabilities)

    def held(self) -> set[Capability]:
        with self._lock:
            return set(self._held)

    def acquire(self, capability: Capability) -> None:
        with self._lock:
            if capability in self._held:
                raise DeviceBusyError(self.serial, capability)
            self._held.add(capability)
            self.acquire_count[capability] += 1

    def release(self, capability: Capability) -> None:
        with self._lock:
            self._held.discard(capability)
            self.release_count[capability] += 1

    def reset(self, capability: Capability) -> None:
        log.debug(f"({self.serial}) reset radio of {capability.value}")
        with self._lock:
            self.reset_count[capability] += 1

    def script(self, action: Action, responses: list[FakeResponse]) -> None:
        with self._lock:
            self._scripts.setdefault(action, deque()).append(list(responses))

    def request(self, action: Action, payload: dict, callback: ResponseCallback) -> None:
        with self._lock:
            self.requests.append((action, payload))
            scripted = self._scripts.get(action)
            responses = scripted.popleft() if scripted else None
        if responses is None:
            responses = self._default_responses(action, payload)

        for r in responses:
            response = Response(action=action, payload=r.payload, error=r.error)
            timer = threading.Timer(r.delay or self.response_delay, callback, args=(response,))
            timer.daemon = True
            with self._lock:
                self._timers[action] = [t for t in self._timers.get(action, []) if t.is_alive()] + [timer]
                timer.start()

    def cancel(self, action: Action) -> None:
        with self._lock:
            timers = self._timers.pop(action, [])
        for t in timers:
            t.cancel()

    def timers(self, action: Action) -> int:
        """tracked delivery timers of an action, fired ones are dropped on the next request"""
        with self._lock:
            return len(self._timers.get(action, []))

    def requested(self, action: Action) -> list[dict]:
        return [p for a, p in self.requests if a == action]

    def _default_responses(self, action: Action, payload: dict) -> list[FakeResponse]:
        if action == Action.BLE_CONNECT_SECURE:
            return [FakeResponse(payload={"connected": True, "secure": self.secure})]
        if action == Action.BLE_DISCONNECT:
            return [FakeResponse(payload={"connected": False})]
        if action == Action.BLE_SCAN:
            return [FakeResponse(payload={"address": a, "rssi": -50}) for a in self.advertisers]
        if action == Action.P2P_DISCOVER_SERVICES:
            requests = [ServiceRequest(**r) for r in payload.get("requests", [])]
            return [
                FakeResponse(payload={"type": s.type.value, "name": s.name})
                for s in self.services
                if any(s.matches(r) for r in requests)
            ]
        return [FakeResponse()]
