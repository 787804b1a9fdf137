from enum import Enum


class FailureCause(str, Enum):
    """Why a test's execute step did not produce a passing outcome"""

    TIMED_OUT = "timed_out"
    PROTOCOL_MISMATCH = "protocol_mismatch"
    UNEXPECTED_RESPONSE = "unexpected_response"
    CANCELLED = "cancelled"


class SkipCase(Exception):  # noqa: N818
    """Raised by prepare when a required capability is absent. Not a failure."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CaseFailure(Exception):  # noqa: N818
    def __init__(self, cause: FailureCause, detail: str = ""):
        super().__init__(f"{cause.value}: {detail}" if detail else cause.value)
        self.cause = cause
        self.detail = detail


class CaseTimeoutError(CaseFailure):
    def __init__(self, duration: float):
        super().__init__(FailureCause.TIMED_OUT, f"no result within {duration}s")


class CaseCancelledError(CaseFailure):
    def __init__(self, detail: str = "cancellation requested"):
        super().__init__(FailureCause.CANCELLED, detail)


class DuplicateMetricError(ValueError):
    def __init__(self, test_id: str, metric_name: str):
        super().__init__(f"metric {metric_name!r} already recorded for {test_id}")
        self.test_id = test_id
        self.metric_name = metric_name


class FrozenReportLogError(RuntimeError):
    def __init__(self, test_id: str):
        super().__init__(f"report log of {test_id} is frozen")


class TransportError(IOError):
    """Raised when a batch of report logs could not be delivered to the host collector"""


class CaseAlreadyExecutedError(RuntimeError):
    def __init__(self, name: str):
        super().__init__(f"test case {name} has already been executed")
