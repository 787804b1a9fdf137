import logging
import pathlib
from datetime import date, datetime
from enum import Enum
from typing import Self

import ujson
from pydantic import Field

from . import config
from .backend.cases import CaseType, TestCase
from .backend.collectors import CollectorType
from .backend.devices import DeviceType
from .backend.errors import (
    CaseFailure,
    DuplicateMetricError,
    FailureCause,
    SkipCase,
    TransportError,
)
from .backend.result import Outcome, TestStatus
from .backend.utils import parse_abi_id
from .base import BaseModel

log = logging.getLogger(__name__)

__all__ = [
    "CaseFailure",
    "CaseResult",
    "CaseType",
    "CollectorType",
    "DeviceType",
    "DuplicateMetricError",
    "FailureCause",
    "RunnerState",
    "SkipCase",
    "SuiteConfig",
    "SuiteResult",
    "TestFilter",
    "TestStatus",
    "TransportError",
]


class RunnerState(str, Enum):
    """Stages of a suite run, a run always ends in DONE"""

    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    REPORTING = "reporting"
    DONE = "done"

    def __repr__(self) -> str:
        return str.__repr__(self.value)


class TestFilter(BaseModel):
    """An include/exclude filter in ``[abi] case_name`` form.

    Examples:
        >>> TestFilter.parse("x86_64 BleScan").matches("BleScan", "x86_64")
        True
        >>> TestFilter.parse("BleScan").matches("BleScan", "arm64-v8a")
        True
    """

    __test__ = False

    abi: str | None = None
    name: str

    @classmethod
    def parse(cls, value: str) -> Self:
        value = value.strip()
        if " " in value:
            abi, name = parse_abi_id(value)
            return cls(abi=abi, name=name.strip())
        if not value:
            msg = "empty test filter"
            raise ValueError(msg)
        return cls(name=value)

    def matches(self, case_name: str, abi: str) -> bool:
        if self.abi is not None and self.abi != abi:
            return False
        return self.name == case_name

    def __str__(self) -> str:
        return f"{self.abi} {self.name}" if self.abi else self.name


class SuiteConfig(BaseModel):
    """ordered cases plus how to run and report them"""

    case_ids: list[CaseType] = list(CaseType)
    abi: str = config.DEFAULT_ABI
    timeout: float = config.TEST_TIMEOUT_IN_SECONDS
    cancel_grace: float = config.CANCEL_GRACE_IN_SECONDS
    include_filters: list[str] = []
    exclude_filters: list[str] = []
    device: DeviceType = DeviceType.Fake
    device_config: dict = {}
    collector: CollectorType = CollectorType.Local
    collector_config: dict = {}
    suite_label: str = ""
    max_flush_retry: int = config.MAX_FLUSH_RETRY
    flush_retry_interval: float = 1.0

    def included(self, case_id: CaseType) -> bool:
        includes = [TestFilter.parse(f) for f in self.include_filters]
        excludes = [TestFilter.parse(f) for f in self.exclude_filters]
        if includes and not any(f.matches(case_id.name, self.abi) for f in includes):
            return False
        return not any(f.matches(case_id.name, self.abi) for f in excludes)


class CaseResult(BaseModel):
    case_id: CaseType
    name: str
    test_id: str
    abi: str
    outcome: Outcome = Field(default_factory=Outcome)
    metrics: dict[str, float | None] = {}

    @property
    def status(self) -> TestStatus:
        return self.outcome.status

    @classmethod
    def from_case(cls, case: TestCase) -> Self:
        metrics = {}
        if case.report_log is not None and case.outcome.status != TestStatus.SKIPPED:
            metrics = case.report_log.to_row()
        return cls(
            case_id=case.case_id,
            name=case.name,
            test_id=str(case.test_id),
            abi=case.abi,
            outcome=case.outcome,
            metrics=metrics,
        )


class SuiteResult(BaseModel):
    run_id: str
    suite_label: str
    abi: str
    results: list[CaseResult]
    device: dict = {}
    start_time: datetime | None = None
    end_time: datetime | None = None
    report_error: str | None = None
    retry_of: str | None = None

    file_fmt: str = "result_{}_{}_{}_{}.json"  # result_20240718_nightly_arm64-v8a_1a2b3c4d.json

    @property
    def test_status(self) -> TestStatus:
        """worst status among the tests"""
        return TestStatus.worst([r.status for r in self.results])

    @property
    def status(self) -> TestStatus:
        """overall status, a failed flush counts as an error"""
        if self.report_error is not None:
            return TestStatus.worst([self.test_status, TestStatus.ERROR])
        return self.test_status

    def statuses(self) -> list[TestStatus]:
        return [r.status for r in self.results]

    def count(self, status: TestStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def get(self, case_id: CaseType) -> CaseResult | None:
        for r in self.results:
            if r.case_id == case_id:
                return r
        return None

    def retry_case_ids(self) -> list[CaseType]:
        return [r.case_id for r in self.results if r.status.need_retry()]

    def write_file(self, result_dir: pathlib.Path | None = None) -> pathlib.Path:
        result_dir = pathlib.Path(result_dir or config.RESULTS_LOCAL_DIR)
        if not result_dir.exists():
            log.info(f"local result directory not exist, creating it: {result_dir}")
            result_dir.mkdir(parents=True)

        file_name = self.file_fmt.format(
            date.today().strftime("%Y%m%d"),
            self.suite_label or self.run_id,
            self.abi,
            self.run_id[:8],
        )
        result_file = result_dir.joinpath(file_name)
        if result_file.exists():
            log.warning(f"Replacing existing result with the same file_name: {result_file}")

        log.info(f"write results to disk {result_file}")
        with result_file.open("w") as f:
            f.write(self.model_dump_json(exclude={"file_fmt"}))
        return result_file

    @classmethod
    def read_file(cls, full_path: pathlib.Path) -> Self:
        if not full_path.exists():
            msg = f"No such file: {full_path}"
            raise ValueError(msg)

        with pathlib.Path(full_path).open("r") as f:
            suite_result = ujson.loads(f.read())
            if "suite_label" not in suite_result:
                suite_result["suite_label"] = suite_result.get("run_id", "")
            return cls.model_validate(suite_result)

    def display(self) -> None:
        if not self.results:
            return

        max_case = max(10, *(len(r.case_id.name) for r in self.results))
        max_status = max(len(s.value) for s in TestStatus)
        DATA_FORMAT = f"%-{max_case}s | %-{max_status}s %-20s %8s | %s"  # noqa: N806

        fmt = [
            f"Suite summary: run_id={self.run_id[:5]}, suite_label={self.suite_label}, abi={self.abi}, "
            f"status={self.status.value}",
            DATA_FORMAT % ("case", "status", "cause", "dur(s)", "metrics"),
            DATA_FORMAT % ("-" * max_case, "-" * max_status, "-" * 20, "-" * 8, "-" * 7),
        ]
        for r in self.results:
            metrics = ", ".join(f"{k}={v}" for k, v in r.metrics.items())
            fmt.append(
                DATA_FORMAT
                % (
                    r.case_id.name,
                    r.status.value,
                    r.outcome.cause.value if r.outcome.cause else "",
                    round(r.outcome.duration, 3),
                    metrics,
                ),
            )
        if self.report_error:
            fmt.append(f"Report error: {self.report_error}")

        tmp_logger = logging.getLogger("no_color")
        for f in fmt:
            tmp_logger.info(f)
