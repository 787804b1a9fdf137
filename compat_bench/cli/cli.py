import logging
import sys
from collections.abc import Callable
from pathlib import Path
from pprint import pformat
from typing import (
    Annotated,
    Any,
    TypedDict,
    Unpack,
    get_origin,
    get_type_hints,
)

import click
from yaml import YAMLError, load

from .. import config
from ..backend.collectors import CollectorType
from ..backend.devices import Capability, DeviceType
from ..interface import compat_runner
from ..models import CaseType, SuiteConfig, SuiteResult, TestStatus

try:
    from yaml import CLoader as Loader
except ImportError:
    from yaml import Loader

log = logging.getLogger(__name__)


def click_get_defaults_from_file(ctx, param, value):  # noqa: ANN001, ARG001
    """Option defaults from a yaml file.

    The `common` section applies to every command, a section named after the
    command overrides it. Keys may be written as option names, `suite-label`,
    or parameter names, `suite_label`.
    """
    if not value:
        return value

    path = Path(value)
    input_file = path if path.exists() else Path(config.CONFIG_LOCAL_DIR, path)
    try:
        with input_file.open() as f:
            sections = load(f.read(), Loader=Loader) or {}  # noqa: S506
    except (OSError, YAMLError) as e:
        msg = f"Failed to load config file: {e}"
        raise click.BadParameter(msg) from e

    if not isinstance(sections, dict):
        msg = f"{input_file} must map command names to option defaults"
        raise click.BadParameter(msg)

    defaults: dict[str, Any] = {}
    for section in ("common", ctx.command.name):
        defaults.update(sections.get(section) or {})
    log.debug(f"defaults of {ctx.command.name} from {input_file}: {defaults}")
    ctx.default_map = {k.replace("-", "_"): v for k, v in defaults.items()}
    return value


def click_parameter_decorators_from_typed_dict(
    typed_dict: type,
) -> Callable[[click.decorators.FC], click.decorators.FC]:
    """One decorator applying every click option declared in a TypedDict, each
    key annotated as ``Annotated[<type>, click.option(...)]``. Inherited keys
    come first, so `CommonTypedDict` options lead the help of every command.
    """
    decorators = []
    for key, t in get_type_hints(typed_dict, include_extras=True).items():
        metadata = getattr(t, "__metadata__", ()) if get_origin(t) is Annotated else ()
        if len(metadata) != 1 or metadata[0].__module__ != "click.decorators":
            msg = f"{typed_dict.__name__}.{key} must be Annotated with exactly one click decorator"
            raise TypeError(msg)
        decorators.append(metadata[0])

    def deco(f):  # noqa: ANN001
        for dec in reversed(decorators):
            f = dec(f)
        return f

    return deco


def click_arg_split(ctx: click.Context, param: click.core.Option, value):  # noqa: ANN001, ARG001
    """Split a comma-separated option value into a list, dropping blanks"""
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return [str(c).strip() for c in value if str(c).strip()]
    return [c.strip() for c in value.split(",") if c.strip()]


def parse_case_types(ctx: click.Context, param: click.core.Option, value):  # noqa: ANN001
    names = click_arg_split(ctx, param, value)
    try:
        return [CaseType[n] for n in names]
    except KeyError as e:
        msg = f"Unknown case type {e}, choose from {[ct.name for ct in CaseType]}"
        raise click.BadParameter(msg) from e


def parse_capabilities(ctx: click.Context, param: click.core.Option, value):  # noqa: ANN001
    if value is None:
        return None
    try:
        return {Capability(c) for c in click_arg_split(ctx, param, value)}
    except ValueError as e:
        msg = f"{e}, choose from {[c.value for c in Capability]}"
        raise click.BadParameter(msg) from e


class CommonTypedDict(TypedDict):
    config_file: Annotated[
        bool,
        click.option(
            "--config-file",
            type=click.Path(),
            callback=click_get_defaults_from_file,
            is_eager=True,
            expose_value=False,
            help="Read configuration from yaml file",
        ),
    ]
    device: Annotated[
        str,
        click.option(
            "--device",
            type=click.Choice([d.value for d in DeviceType]),
            default=DeviceType.Fake.value,
            show_default=True,
            help="Device backend to run against",
        ),
    ]
    device_serial: Annotated[
        str | None,
        click.option("--device-serial", type=str, help="Serial of the device under test"),
    ]
    capabilities: Annotated[
        set[Capability] | None,
        click.option(
            "--capabilities",
            type=str,
            callback=parse_capabilities,
            help="Comma-separated capabilities the fake device reports, default: all",
        ),
    ]
    collector: Annotated[
        str,
        click.option(
            "--collector",
            type=click.Choice([c.value for c in CollectorType]),
            default=CollectorType.Local.value,
            show_default=True,
            help="Where flushed metrics go",
        ),
    ]
    collector_url: Annotated[
        str,
        click.option(
            "--collector-url",
            type=str,
            default=config.COLLECTOR_URL,
            show_default=True,
            help="Collector service url, used by the http collector",
        ),
    ]
    timeout: Annotated[
        float,
        click.option(
            "--timeout",
            type=float,
            default=config.TEST_TIMEOUT_IN_SECONDS,
            show_default=True,
            help="Per case execute timeout in seconds",
        ),
    ]
    dry_run: Annotated[
        bool,
        click.option(
            "--dry-run",
            type=bool,
            default=False,
            is_flag=True,
            help="Print just the configuration and exit without running the suite",
        ),
    ]


class RunTypedDict(CommonTypedDict):
    case_type: Annotated[
        list[CaseType],
        click.option(
            "--case-type",
            type=str,
            default=",".join(ct.name for ct in CaseType),
            show_default=True,
            callback=parse_case_types,
            help="Comma-separated case types, run in the given order",
        ),
    ]
    abi: Annotated[
        str,
        click.option(
            "--abi",
            type=click.Choice(config.SUPPORTED_ABIS),
            default=config.DEFAULT_ABI,
            show_default=True,
            help="ABI the metrics are reported under",
        ),
    ]
    include_filter: Annotated[
        list[str],
        click.option(
            "--include-filter",
            type=str,
            multiple=True,
            help="Run only matching cases, '[abi] case_type', repeatable",
        ),
    ]
    exclude_filter: Annotated[
        list[str],
        click.option(
            "--exclude-filter",
            type=str,
            multiple=True,
            help="Skip matching cases, '[abi] case_type', repeatable",
        ),
    ]
    suite_label: Annotated[str, click.option("--suite-label", type=str, default="", help="Suite label")]


class RetryTypedDict(CommonTypedDict):
    run_id: Annotated[
        str,
        click.option("--run-id", type=str, required=True, help="Run id, or its prefix, to retry"),
    ]


@click.group()
def cli(): ...


def build_suite(**parameters: Unpack[RunTypedDict]) -> SuiteConfig:
    device_config = {}
    if parameters.get("device_serial"):
        device_config["serial"] = parameters["device_serial"]
    if parameters.get("capabilities") is not None:
        device_config["capabilities"] = parameters["capabilities"]

    collector = CollectorType(parameters["collector"])
    collector_config = {}
    if collector == CollectorType.Http:
        collector_config["url"] = parameters["collector_url"]

    return SuiteConfig(
        case_ids=parameters.get("case_type") or list(CaseType),
        abi=parameters.get("abi") or config.DEFAULT_ABI,
        timeout=parameters["timeout"],
        include_filters=list(parameters.get("include_filter") or []),
        exclude_filters=list(parameters.get("exclude_filter") or []),
        device=DeviceType(parameters["device"]),
        device_config=device_config,
        collector=collector,
        collector_config=collector_config,
        suite_label=parameters.get("suite_label") or "",
    )


def exit_with(result: SuiteResult):
    """exit code 0 unless a case failed, errored, or the metrics were not delivered"""
    if result.status.severity >= TestStatus.FAIL.severity:
        sys.exit(1)


@cli.command()
@click_parameter_decorators_from_typed_dict(RunTypedDict)
def run(**parameters: Unpack[RunTypedDict]):
    """Run a compliance suite against one device"""
    suite = build_suite(**parameters)
    log.info(f"Suite:\n{pformat(suite.model_dump())}\n")
    if parameters["dry_run"]:
        return

    result = compat_runner.run(suite)
    exit_with(result)


@cli.command()
@click_parameter_decorators_from_typed_dict(RetryTypedDict)
def retry(**parameters: Unpack[RetryTypedDict]):
    """Re-run the failed and not executed cases of a previous run"""
    suite = build_suite(**parameters)
    log.info(f"Retry {parameters['run_id']} with:\n{pformat(suite.model_dump())}\n")
    if parameters["dry_run"]:
        return

    result = compat_runner.retry(parameters["run_id"], suite=suite)
    exit_with(result)


@cli.command(name="list-cases")
def list_cases():
    """List the registered case types and the capabilities they need"""
    tmp_logger = logging.getLogger("no_color")
    for ct in CaseType:
        case = ct.case()
        caps = ",".join(sorted(c.value for c in case.capabilities))
        tmp_logger.info(f"{ct.name:24} | {caps:48} | {ct.case_name}")
