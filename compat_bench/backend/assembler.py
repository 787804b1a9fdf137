import logging

from ..models import SuiteConfig
from .cases import CaseType, TestCase
from .devices import DeviceChannel
from .report_sink import ReportSink
from .task_runner import SuiteRunner

log = logging.getLogger(__name__)


class Assembler:
    @classmethod
    def assemble(cls, suite: SuiteConfig, case_id: CaseType) -> TestCase:
        return case_id.case(abi=suite.abi, timeout=suite.timeout)

    @classmethod
    def assemble_all(
        cls,
        run_id: str,
        suite: SuiteConfig,
        device: DeviceChannel,
        sink: ReportSink,
    ) -> SuiteRunner:
        """keep the configured order, drop what the filters exclude"""
        cases = []
        for case_id in suite.case_ids:
            if not suite.included(case_id):
                log.info(f"case {case_id.name} filtered out for abi {suite.abi}")
                continue
            cases.append(cls.assemble(suite, case_id))

        return SuiteRunner(
            run_id=run_id,
            suite_label=suite.suite_label or run_id,
            cases=cases,
            device=device,
            sink=sink,
            abi=suite.abi,
            cancel_grace=suite.cancel_grace,
            max_flush_retry=suite.max_flush_retry,
            flush_retry_interval=suite.flush_retry_interval,
        )
