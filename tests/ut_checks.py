import threading

from compat_bench.backend.cases import CaseType, TestCase
from compat_bench.backend.checks import Check, CheckContext
from compat_bench.backend.collectors import HostCollector, ReportBatch
from compat_bench.backend.devices import Action, Capability
from compat_bench.backend.errors import CaseFailure, FailureCause, TransportError
from compat_bench.metric import ResultType, ResultUnit


class RecordingCheck(Check):
    """records the given metrics and passes"""

    name = "recording"

    def __init__(self, metrics: dict | None = None, capabilities=frozenset({Capability.BLE})):
        self.metrics = metrics if metrics is not None else {"latency": 1.5}
        self.required_capabilities = frozenset(capabilities)
        self.released = 0

    def run(self, ctx: CheckContext) -> str:
        for name, value in self.metrics.items():
            ctx.report_log.add_value(name, value, ResultUnit.MS, ResultType.LOWER_BETTER)
        return "recorded"

    def release(self, device):
        self.released += 1


class FailingCheck(RecordingCheck):
    """records its metrics, then reports an unexpected response"""

    def run(self, ctx: CheckContext) -> str:
        super().run(ctx)
        raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, "peer answered garbage")


class DuplicateMetricCheck(RecordingCheck):
    def run(self, ctx: CheckContext) -> str:
        ctx.report_log.add_value("latency", 1)
        ctx.report_log.add_value("latency", 2)
        return "unreachable"


class BrokenCheck(RecordingCheck):
    def run(self, ctx: CheckContext) -> str:
        raise KeyError("boom")


class SilentCheck(RecordingCheck):
    """waits for a scan result that never comes unless cancelled"""

    def run(self, ctx: CheckContext) -> str:
        pending = ctx.request(Action.BLE_SCAN, {})
        ctx.wait_for(pending)
        return "unreachable"


def make_case(check: Check, case_id: CaseType = CaseType.BleScan, timeout: float = 2.0, abi: str = "arm64-v8a"):
    return TestCase(
        case_id=case_id,
        name=case_id.name,
        check=check,
        abi=abi,
        timeout=timeout,
    )


class MemoryCollector(HostCollector):
    def __init__(self):
        self.batches: list[ReportBatch] = []

    def flush(self, batch: ReportBatch) -> None:
        self.batches.append(batch)

    def keys(self) -> list[tuple[str, str]]:
        return [k for b in self.batches for k in b.keys()]


class FailingCollector(MemoryCollector):
    """raises TransportError for the first ``failures`` flushes"""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def flush(self, batch: ReportBatch) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            msg = f"collector unreachable, attempt {self.attempts}"
            raise TransportError(msg)
        super().flush(batch)


class BlockingCheck(RecordingCheck):
    """blocks on its own event, never looking at the cancellation signal"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.unblock = threading.Event()

    def run(self, ctx: CheckContext) -> str:
        self.unblock.wait(10)
        return "late"
