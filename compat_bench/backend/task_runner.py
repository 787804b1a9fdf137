import concurrent.futures
import logging
import threading
import time
import traceback
from datetime import datetime

from .. import config
from ..models import CaseResult, RunnerState, SuiteResult
from .cases import TestCase
from .devices import DeviceChannel
from .errors import CaseFailure, CaseTimeoutError, DuplicateMetricError, SkipCase, TransportError
from .report_sink import ReportSink
from .result import Outcome, TestStatus
from .utils import sanitize_stack_trace

log = logging.getLogger(__name__)


class CaseRunner:
    """Drives one TestCase through prepare, execute and cleanup.

    execute runs on a daemon worker thread so the timeout can be enforced; on
    expiry the case's cancel event is set and the check gets ``cancel_grace``
    seconds to observe it before cleanup releases the device. A check still
    running after that is left behind on its thread.
    """

    def __init__(
        self,
        case: TestCase,
        device: DeviceChannel,
        timeout: float | None = None,
        cancel_grace: float = config.CANCEL_GRACE_IN_SECONDS,
    ):
        self.case = case
        self.device = device
        self.timeout = timeout if timeout is not None else case.timeout
        self.cancel_grace = cancel_grace
        self.cancel_event = threading.Event()

    def run(self) -> Outcome:
        start_time = datetime.now()
        try:
            with self.case.session(self.device):
                message = self._execute()
            outcome = Outcome(status=TestStatus.PASS, message=message)
        except SkipCase as e:
            log.info(f"case {self.case.name} skipped, reason={e.reason}")
            outcome = Outcome(status=TestStatus.SKIPPED, message=e.reason)
        except CaseFailure as e:
            log.warning(f"case {self.case.name} failed, cause={e.cause.value}, detail={e.detail}")
            outcome = Outcome(
                status=TestStatus.FAIL,
                cause=e.cause,
                message=str(e),
                stack_trace=sanitize_stack_trace(traceback.format_exc()),
            )
        except DuplicateMetricError as e:
            log.warning(f"case {self.case.name} aborted, reason={e}")
            outcome = Outcome(
                status=TestStatus.ERROR,
                message=str(e),
                stack_trace=sanitize_stack_trace(traceback.format_exc()),
            )
        except Exception as e:
            log.warning(f"case {self.case.name} raised an error, reason={e}")
            outcome = Outcome(
                status=TestStatus.ERROR,
                message=f"{e.__class__.__name__}: {e}",
                stack_trace=sanitize_stack_trace(traceback.format_exc()),
            )

        outcome.start_time = start_time
        outcome.end_time = datetime.now()
        self.case.complete(outcome)
        return outcome

    def _execute(self) -> str:
        future: concurrent.futures.Future[str] = concurrent.futures.Future()

        def work():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.case.execute(self.cancel_event))
            except Exception as e:
                future.set_exception(e)

        worker = threading.Thread(target=work, name=f"case-{self.case.case_id.name}", daemon=True)
        worker.start()
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as e:
            log.warning(f"case {self.case.name} timeout in {self.timeout}s, cancelling")
            self.stop()
            _, not_done = concurrent.futures.wait([future], timeout=self.cancel_grace)
            if not_done:
                log.warning(
                    f"case {self.case.name} did not observe cancellation in {self.cancel_grace}s, "
                    f"abandon worker {worker.name}",
                )
            raise CaseTimeoutError(self.timeout) from e

    def stop(self) -> None:
        self.cancel_event.set()


DATA_FORMAT = " %-24s | %-36s %-12s | %-10s"
TITLE_FORMAT = DATA_FORMAT % ("Case", "Capabilities", "ABI", "suite_label")


class SuiteRunner:
    """Runs test cases one after another and reports their metrics.

    IDLE -> PREPARING -> RUNNING -> REPORTING -> DONE. A failing case never
    stops the suite and a failing flush never loses results: the report error
    lands in the SuiteResult and ``flush`` can be called again.
    """

    def __init__(
        self,
        run_id: str,
        suite_label: str,
        cases: list[TestCase],
        device: DeviceChannel,
        sink: ReportSink,
        abi: str = config.DEFAULT_ABI,
        cancel_grace: float = config.CANCEL_GRACE_IN_SECONDS,
        max_flush_retry: int = config.MAX_FLUSH_RETRY,
        flush_retry_interval: float = 1.0,
    ):
        self.run_id = run_id
        self.suite_label = suite_label
        self.cases = cases
        self.device = device
        self.sink = sink
        self.abi = abi
        self.cancel_grace = cancel_grace
        self.max_flush_retry = max_flush_retry
        self.flush_retry_interval = flush_retry_interval

        self.state = RunnerState.IDLE
        self.running_case: CaseRunner | None = None
        self.result: SuiteResult | None = None

    def num_cases(self) -> int:
        return len(self.cases)

    def num_finished(self) -> int:
        return sum(1 for c in self.cases if c.completed)

    def _transit(self, state: RunnerState) -> None:
        log.debug(f"suite {self.suite_label or self.run_id}: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> SuiteResult:
        if self.state != RunnerState.IDLE:
            msg = f"suite runner is {self.state.value}, it runs only once"
            raise RuntimeError(msg)

        start_time = datetime.now()
        self._transit(RunnerState.PREPARING)
        self.display()

        self._transit(RunnerState.RUNNING)
        num_cases = self.num_cases()
        for idx, case in enumerate(self.cases):
            log.info(f"[{idx+1}/{num_cases}] start case: {case.name}")
            self.running_case = CaseRunner(case, self.device, cancel_grace=self.cancel_grace)
            outcome = self.running_case.run()
            log.info(
                f"[{idx+1}/{num_cases}] finish case: {case.name}, status={outcome.status.value}",
                extra={"status": outcome.status.value},
            )
        self.running_case = None

        self._transit(RunnerState.REPORTING)
        for case in self.cases:
            if case.report_log is not None and case.outcome.status != TestStatus.SKIPPED:
                self.sink.submit(case.report_log)

        self.result = SuiteResult(
            run_id=self.run_id,
            suite_label=self.suite_label,
            abi=self.abi,
            results=[CaseResult.from_case(c) for c in self.cases],
            device=self.device.info(),
            start_time=start_time,
        )
        self.flush()
        self.result.end_time = datetime.now()

        self._transit(RunnerState.DONE)
        log.info(
            f"Finish suite: label={self.suite_label}, run_id={self.run_id}, status={self.result.status.value}",
            extra={"status": self.result.status.value},
        )
        return self.result

    def flush(self) -> bool:
        """Ship unsent report logs, retrying on transport errors.

        Returns:
            bool: True when nothing is left unsent
        """
        for retry_idx in range(self.max_flush_retry + 1):
            try:
                self.sink.flush()
            except TransportError as e:
                log.warning(f"Flush failed, try_idx={retry_idx}, Exception: {e}")
                if self.result is not None:
                    self.result.report_error = str(e)
                if retry_idx < self.max_flush_retry:
                    time.sleep(self.flush_retry_interval * (retry_idx + 1))
            else:
                if self.result is not None:
                    self.result.report_error = None
                return True
        return False

    def stop(self) -> None:
        """cancel the running case, the suite moves on to the next one"""
        if self.running_case is not None:
            log.info(f"will cancel running case: {self.running_case.case.name}")
            self.running_case.stop()

    def display(self) -> None:
        fmt = [TITLE_FORMAT]
        fmt.append(DATA_FORMAT % ("-" * 24, "-" * 36, "-" * 12, "-" * 10))
        for c in self.cases:
            fmt.append(
                DATA_FORMAT
                % (
                    c.case_id.name,
                    ",".join(sorted(cap.value for cap in c.capabilities)),
                    c.abi,
                    self.suite_label,
                ),
            )

        tmp_logger = logging.getLogger("no_color")
        for f in fmt:
            tmp_logger.info(f)
