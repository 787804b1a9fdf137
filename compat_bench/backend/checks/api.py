import logging
import queue
import threading
import time
from abc import ABC, abstractmethod

from ... import config
from ...metric import MetricReportLog
from ..devices.api import Action, Capability, DeviceChannel, Response
from ..errors import CaseCancelledError, CaseTimeoutError

log = logging.getLogger(__name__)


class PendingRequest:
    """Responses of one request, queued as the device delivers them"""

    def __init__(self, action: Action):
        self.action = action
        self.sent_at = time.perf_counter()
        self._responses: queue.Queue[Response] = queue.Queue()

    def deliver(self, response: Response) -> None:
        self._responses.put(response)

    def next(self, timeout: float) -> Response | None:
        try:
            return self._responses.get(timeout=timeout)
        except queue.Empty:
            return None


class CheckContext:
    """What a check sees while it runs: the device, its report log and the
    cancellation signal set by the runner.

    Every wait goes through this context, so cancellation is observed at each
    callback boundary.
    """

    def __init__(
        self,
        device: DeviceChannel,
        report_log: MetricReportLog,
        cancel_event: threading.Event,
        poll_interval: float = config.CALLBACK_POLL_INTERVAL,
    ):
        self.device = device
        self.report_log = report_log
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise CaseCancelledError

    def request(self, action: Action, payload: dict | None = None) -> PendingRequest:
        self.check_cancelled()
        pending = PendingRequest(action)
        log.debug(f"request {action.value} to {self.device.serial}, payload={payload}")
        self.device.request(action, payload or {}, pending.deliver)
        return pending

    def wait_for(self, pending: PendingRequest, timeout: float | None = None) -> Response:
        """Block until the next response of ``pending`` arrives.

        Raises:
            CaseCancelledError: the runner asked the test to stop
            CaseTimeoutError: no response within ``timeout`` seconds
        """
        deadline = None if timeout is None else time.perf_counter() + timeout
        while True:
            self.check_cancelled()
            wait = self.poll_interval
            if deadline is not None:
                left = deadline - time.perf_counter()
                if left <= 0:
                    raise CaseTimeoutError(timeout)
                wait = min(wait, left)
            response = pending.next(wait)
            if response is not None:
                return response

    def collect(self, pending: PendingRequest, window: float) -> list[tuple[float, Response]]:
        """Gather every response arriving within ``window`` seconds.

        Returns:
            list[tuple[float, Response]]: (latency in ms since the request, response)
        """
        got = []
        deadline = time.perf_counter() + window
        while True:
            self.check_cancelled()
            left = deadline - time.perf_counter()
            if left <= 0:
                return got
            response = pending.next(min(self.poll_interval, left))
            if response is not None:
                got.append((round((time.perf_counter() - pending.sent_at) * 1000, 3), response))


class Check(ABC):
    """The concrete work of one test case.

    A TestCase owns exactly one check; the case handles the lifecycle and the
    check only talks to the device through the CheckContext.
    """

    name: str = ""
    required_capabilities: frozenset[Capability] = frozenset()
    reset_radio_after_test: bool = False

    @abstractmethod
    def run(self, ctx: CheckContext) -> str:
        """Run the check, return a short message on success.

        Raises CaseFailure on timeout, unexpected response or protocol mismatch.
        """
        raise NotImplementedError

    def release(self, device: DeviceChannel) -> None:  # noqa: B027
        """Undo what ``run`` left behind on the device, called from cleanup"""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"
