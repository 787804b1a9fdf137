import logging
import pathlib

import ujson

from ... import config
from ..errors import TransportError
from .api import HostCollector, ReportBatch

log = logging.getLogger(__name__)


class LocalFileCollector(HostCollector):
    """Writes every batch as one json file under ``result_dir/metrics``"""

    file_fmt: str = "metrics_{}_{}.json"  # metrics_<run_id>_<sequence>.json

    def __init__(self, result_dir: pathlib.Path | None = None):
        self.result_dir = pathlib.Path(result_dir or config.RESULTS_LOCAL_DIR).joinpath("metrics")

    def flush(self, batch: ReportBatch) -> None:
        try:
            if not self.result_dir.exists():
                log.info(f"local metrics directory not exist, creating it: {self.result_dir}")
                self.result_dir.mkdir(parents=True)

            seq = len(list(self.result_dir.glob(self.file_fmt.format(batch.run_id, "*"))))
            metrics_file = self.result_dir.joinpath(self.file_fmt.format(batch.run_id, seq))
            log.info(f"write {len(batch.logs)} report logs to disk {metrics_file}")
            with metrics_file.open("w") as f:
                f.write(ujson.dumps(batch.model_dump(mode="json"), indent=2))
        except OSError as e:
            msg = f"failed to write metrics into {self.result_dir}: {e}"
            raise TransportError(msg) from e

    def read_batches(self, run_id: str | None = None) -> list[ReportBatch]:
        pattern = self.file_fmt.format(run_id or "*", "*")
        batches = []
        for metrics_file in sorted(self.result_dir.glob(pattern)):
            with metrics_file.open("r") as f:
                batches.append(ReportBatch(**ujson.loads(f.read())))
        return batches
