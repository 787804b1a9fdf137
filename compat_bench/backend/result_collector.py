import logging
import pathlib

from compat_bench.models import SuiteResult

log = logging.getLogger(__name__)


class ResultCollector:
    @classmethod
    def collect(cls, result_dir: pathlib.Path) -> list[SuiteResult]:
        reg = "result_*.json"
        results = []
        if not result_dir.exists() or len(list(result_dir.glob(reg))) == 0:
            return []

        for json_file in sorted(result_dir.glob(reg)):
            try:
                results.append(SuiteResult.read_file(json_file))
            except ValueError as e:
                log.warning(f"skip unreadable result file {json_file}: {e}")

        return results

    @classmethod
    def find(cls, result_dir: pathlib.Path, run_id: str) -> SuiteResult:
        for result in cls.collect(result_dir):
            if result.run_id == run_id or result.run_id.startswith(run_id):
                return result
        msg = f"Could not find run {run_id} in {result_dir}"
        raise ValueError(msg)
