import logging

from . import config
from .cli.compatbench import cli

log = logging.getLogger("compat_bench")


def main():
    log.debug(f"all configs: {config().display()}")
    cli()


if __name__ == "__main__":
    main()
