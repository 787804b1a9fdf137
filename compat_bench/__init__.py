import inspect
import pathlib

import environs

from . import log_util

env = environs.Env()
env.read_env(".env", recurse=False)


class config:
    LOG_LEVEL = env.str("LOG_LEVEL", "INFO")

    DEFAULT_ABI = env.str("DEFAULT_ABI", "arm64-v8a")
    SUPPORTED_ABIS = env.list(
        "SUPPORTED_ABIS",
        [
            "armeabi-v7a",
            "arm64-v8a",
            "x86",
            "x86_64",
        ],
    )

    TEST_TIMEOUT_IN_SECONDS = env.float("TEST_TIMEOUT_IN_SECONDS", 30.0)
    CANCEL_GRACE_IN_SECONDS = env.float("CANCEL_GRACE_IN_SECONDS", 2.0)
    CALLBACK_POLL_INTERVAL = env.float("CALLBACK_POLL_INTERVAL", 0.05)

    RESULTS_LOCAL_DIR = env.path(
        "RESULTS_LOCAL_DIR",
        pathlib.Path(__file__).parent.joinpath("results"),
    )
    CONFIG_LOCAL_DIR = env.path(
        "CONFIG_LOCAL_DIR",
        pathlib.Path(__file__).parent.joinpath("config-files"),
    )

    COLLECTOR_URL = env.str("COLLECTOR_URL", "http://127.0.0.1:5000")
    COLLECTOR_TIMEOUT = env.int("COLLECTOR_TIMEOUT", 10)
    MAX_FLUSH_RETRY = env.int("MAX_FLUSH_RETRY", 2)

    def display(self) -> list:
        return [
            i
            for i in inspect.getmembers(self)
            if not inspect.ismethod(i[1]) and not i[0].startswith("_") and "TIMEOUT" not in i[0]
        ]


log_util.init(config.LOG_LEVEL)
