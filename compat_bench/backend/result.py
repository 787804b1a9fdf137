from datetime import datetime
from enum import Enum

from ..base import BaseModel
from .errors import FailureCause


class TestStatus(str, Enum):
    """Per-test result status.

    Ordered by severity, the overall status of a suite is the worst of its tests.
    """

    __test__ = False

    PASS = "PASS"
    SKIPPED = "SKIPPED"
    FAIL = "FAIL"
    ERROR = "ERROR"
    NOT_EXECUTED = "NOT_EXECUTED"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def worst(cls, statuses: "list[TestStatus]") -> "TestStatus":
        """PASS for an empty list"""
        return max(statuses, key=lambda s: s.severity, default=cls.PASS)

    def need_retry(self) -> bool:
        return self in (TestStatus.FAIL, TestStatus.ERROR, TestStatus.NOT_EXECUTED)


_SEVERITY = {
    TestStatus.PASS: 0,
    TestStatus.SKIPPED: 1,
    TestStatus.NOT_EXECUTED: 2,
    TestStatus.FAIL: 3,
    TestStatus.ERROR: 4,
}


class TestIdentifier(BaseModel):
    __test__ = False

    class_name: str
    method: str

    def __str__(self) -> str:
        return f"{self.class_name}#{self.method}"

    def __hash__(self) -> int:
        return hash((self.class_name, self.method))

    @classmethod
    def parse(cls, value: str) -> "TestIdentifier":
        class_name, sep, method = value.partition("#")
        if not sep or not class_name or not method:
            msg = f"test identifier must be in class#method format: {value!r}"
            raise ValueError(msg)
        return cls(class_name=class_name, method=method)


class Outcome(BaseModel):
    """What one test case ended with"""

    status: TestStatus = TestStatus.NOT_EXECUTED
    cause: FailureCause | None = None
    message: str = ""
    stack_trace: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def duration(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()
