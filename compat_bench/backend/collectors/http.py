import logging

import requests

from ... import config
from ..errors import TransportError
from .api import HostCollector, ReportBatch

log = logging.getLogger(__name__)


class HttpCollector(HostCollector):
    """Posts batches to the collector service, see ``compat_bench.restful.app``"""

    def __init__(self, url: str | None = None, timeout: int | None = None):
        self.url = (url or config.COLLECTOR_URL).rstrip("/")
        self.timeout = timeout or config.COLLECTOR_TIMEOUT

    def flush(self, batch: ReportBatch) -> None:
        url = f"{self.url}/reports"
        log.info(f"[POST] {url} - {len(batch.logs)} report logs")
        try:
            response = requests.post(
                url,
                data=batch.model_dump_json(),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"failed to reach collector {url}: {e}"
            raise TransportError(msg) from e

        log.info(f"[POST] {url} - status_code: {response.status_code}")
        if response.status_code != requests.codes.ok:
            msg = f"collector {url} rejected the batch, status_code={response.status_code}"
            raise TransportError(msg)

        try:
            res = response.json()
            code, message = res.get("code"), res.get("message")
        except (ValueError, AttributeError) as e:
            msg = f"collector {url} answered an unreadable reply: {response.text[:200]!r}"
            raise TransportError(msg) from e

        if code != 0:
            msg = f"collector {url} rejected the batch: {message}"
            raise TransportError(msg)
