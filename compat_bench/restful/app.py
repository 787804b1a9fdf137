import logging
import threading

from flask import Flask, jsonify, request
from pydantic import ValidationError

from compat_bench.backend.collectors import ReportBatch
from compat_bench.backend.collectors.local import LocalFileCollector
from compat_bench.backend.errors import TransportError
from compat_bench.metric import MetricReportLog

log = logging.getLogger(__name__)

app = Flask(__name__)

_lock = threading.Lock()
# (run_id, test_id, abi) -> latest report log received
_reports: dict[tuple[str, str, str], MetricReportLog] = {}
_received_batches = 0


def res_wrapper(code: int = 0, message: str = "", data: any = None):
    return jsonify(dict(code=code, message=message, data=data)), 200


def success_res(data: any = None, message="succeeded"):
    return res_wrapper(code=0, message=message, data=data)


def failed_res(data: any = None, message="failed"):
    return res_wrapper(code=1, message=message, data=data)


def reset() -> None:
    """forget every received report"""
    global _received_batches
    with _lock:
        _reports.clear()
        _received_batches = 0


@app.route("/reports", methods=["POST"])
def post_reports():
    """Take one report batch.

    A log replaces the one held for the same run, test and abi. A log whose
    log_id is already held is ignored, so a re-flushed batch is harmless.
    """
    global _received_batches
    try:
        batch = ReportBatch.model_validate(request.get_json(force=True))
    except ValidationError as e:
        log.warning(f"rejected report batch: {e}")
        return failed_res(message=f"invalid report batch: {e.error_count()} errors")

    with _lock:
        _received_batches += 1
        fresh = []
        for r in batch.logs:
            key = (batch.run_id, r.test_id, r.abi)
            held = _reports.get(key)
            if held is not None and held.log_id == r.log_id:
                continue
            _reports[key] = r
            fresh.append(r)

    if not fresh:
        return success_res(data=dict(accepted=0), message="duplicated")

    persist_dir = app.config.get("PERSIST_DIR")
    if persist_dir:
        try:
            LocalFileCollector(persist_dir).flush(batch.model_copy(update={"logs": fresh}))
        except TransportError as e:
            log.warning(f"failed to persist report batch of run {batch.run_id}: {e}")

    log.info(f"received {len(fresh)} report logs of run {batch.run_id}")
    return success_res(data=dict(accepted=len(fresh)))


@app.route("/reports", methods=["GET"])
def get_reports():
    """run_id -> report logs, filtered by ``abi`` and ``run_id`` when given"""
    abi = request.args.get("abi")
    run_id = request.args.get("run_id")
    res = {}
    with _lock:
        for (rid, _, log_abi), r in _reports.items():
            if run_id and rid != run_id:
                continue
            if abi is not None and log_abi != abi:
                continue
            res.setdefault(rid, []).append(r.model_dump(mode="json"))
    return success_res(res)


@app.route("/status", methods=["GET"])
def get_status():
    "received 3 batches, 5 report logs of 2 runs"
    with _lock:
        return success_res(
            data=dict(
                received_batches=_received_batches,
                report_logs=len(_reports),
                runs=len({k[0] for k in _reports}),
            ),
        )


def main():
    app.run(host="127.0.0.1", port=5000, debug=False)


if __name__ == "__main__":
    main()
