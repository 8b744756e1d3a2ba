from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.text import Text

from . import app as runner_app
from .config import ClientConfig, ConfigError, load_config
from .errors import PreconditionError, RunnerError
from .params import DebugLevel, MessageSize, TestParameters, default_parameters, parse_size_token
from .parse import extract_raw_data_lines, parse_benchmark_output
from .report import format_summary_line, records_table
from .script import render_script
from .ui import console_for_color_mode

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    pretty_exceptions_enable=True,
    help="Launch and follow nccl-tests runs through the NCCL test dashboard server.",
)

_DEFAULTS = default_parameters()

# Shared TestParameters options (used by `run` and `script`).
MapByOpt = Annotated[str, typer.Option("--map-by", help="mpirun --map-by value.")]
OobIfOpt = Annotated[
    str, typer.Option("--oob-if", help="Interface for mpirun out-of-band TCP (oob_tcp_if_include).")
]
BtlIfOpt = Annotated[
    str, typer.Option("--btl-if", help="Interface for the TCP BTL (btl_tcp_if_include).")
]
GidIndexOpt = Annotated[int, typer.Option("--gid-index", help="NCCL_IB_GID_INDEX.", min=0)]
MinChannelsOpt = Annotated[int, typer.Option("--min-channels", help="NCCL_MIN_NCHANNELS.", min=1)]
QpsOpt = Annotated[int, typer.Option("--qps", help="NCCL_IB_QPS_PER_CONNECTION.", min=1)]
BeginOpt = Annotated[
    str, typer.Option("--begin", help="Smallest message size (e.g. 1, 8K, 128M, 1G).")
]
EndOpt = Annotated[str, typer.Option("--end", help="Largest message size (e.g. 1M, 1G).")]
SizeOpt = Annotated[
    bool,
    typer.Option("--size/--no-size", help="Pass -b/-e to nccl-tests (off: use its defaults)."),
]
ItersOpt = Annotated[int, typer.Option("--iters", help="Iterations per size (-n); 0 disables.", min=0)]
TimeoutOpt = Annotated[
    int, typer.Option("--timeout", help="Server-side run timeout in seconds (0: server default).", min=0)
]
DebugOpt = Annotated[bool, typer.Option("--debug/--no-debug", help="Set NCCL_DEBUG for the run.")]
DebugLevelOpt = Annotated[
    str, typer.Option("--debug-level", help="NCCL_DEBUG level (WARN|INFO|TRACE).")
]
IplistOpt = Annotated[
    str,
    typer.Option(
        "--iplist",
        help="Stored host list (file name on the server). Required to run.",
        envvar="NCCL_TOOLS_IPLIST",
    ),
]
UrlOpt = Annotated[
    str | None,
    typer.Option("--url", help="Dashboard server root URL.", envvar="NCCL_TOOLS_URL"),
]
ColorOpt = Annotated[
    str,
    typer.Option(
        "--color",
        help="Color output mode (auto|always|never).",
        envvar="NCCL_TOOLS_COLOR",
        show_default=True,
    ),
]


def _parse_size_option(name: str, value: str) -> MessageSize:
    try:
        return parse_size_token(value)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint=name) from e


def _parse_debug_level(value: str) -> DebugLevel:
    try:
        return DebugLevel(value.strip().upper())
    except ValueError as e:
        raise typer.BadParameter(
            f"{value!r} (expected one of: WARN, INFO, TRACE)", param_hint="--debug-level"
        ) from e


def _normalize_color(color: str) -> str:
    color_norm = color.strip().lower()
    if color_norm not in {"auto", "always", "never"}:
        raise ConfigError(f"Invalid --color value: {color!r} (expected one of: auto, always, never)")
    return color_norm


def params_from_options(
    *,
    map_by: str,
    oob_if: str,
    btl_if: str,
    gid_index: int,
    min_channels: int,
    qps: int,
    begin: str,
    end: str,
    size: bool,
    iters: int,
    timeout: int,
    debug: bool,
    debug_level: str,
    iplist: str,
) -> TestParameters:
    """Convenience constructor used by the CLI commands."""
    return TestParameters(
        map_by=map_by,
        oob_tcp_interface=oob_if,
        btl_tcp_interface=btl_if,
        nccl_ib_gid_index=gid_index,
        nccl_min_channels=min_channels,
        nccl_ib_qps_per_connection=qps,
        test_size_begin=_parse_size_option("--begin", begin) if size else None,
        test_size_end=_parse_size_option("--end", end) if size else None,
        iters=iters if iters > 0 else None,
        timeout=timeout,
        enable_debug=debug,
        nccl_debug_level=_parse_debug_level(debug_level),
        iplist_file=iplist.strip(),
    )


def _config(url: str | None) -> ClientConfig:
    cfg = load_config()
    if url is not None:
        cfg = replace(cfg, base_url=url)
    return cfg


def _fail(e: Exception) -> typer.Exit:
    if isinstance(e, (ConfigError, PreconditionError)):
        typer.secho(f"CONFIG ERROR: {e}", fg=typer.colors.RED, err=True)
        return typer.Exit(code=2)
    typer.secho(f"ERROR: {e}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


@app.command()
def run(
    map_by: MapByOpt = _DEFAULTS.map_by,
    oob_if: OobIfOpt = _DEFAULTS.oob_tcp_interface,
    btl_if: BtlIfOpt = _DEFAULTS.btl_tcp_interface,
    gid_index: GidIndexOpt = _DEFAULTS.nccl_ib_gid_index,
    min_channels: MinChannelsOpt = _DEFAULTS.nccl_min_channels,
    qps: QpsOpt = _DEFAULTS.nccl_ib_qps_per_connection,
    begin: BeginOpt = "1",
    end: EndOpt = "1M",
    size: SizeOpt = True,
    iters: ItersOpt = 20,
    timeout: TimeoutOpt = _DEFAULTS.timeout,
    debug: DebugOpt = False,
    debug_level: DebugLevelOpt = "WARN",
    iplist: IplistOpt = "",
    url: UrlOpt = None,
    stream: Annotated[
        bool | None,
        typer.Option(
            "--stream/--no-stream",
            help="Follow the run as an event stream (default: NCCL_TOOLS_STREAM or on).",
        ),
    ] = None,
    color: ColorOpt = "auto",
) -> None:
    """
    Precheck the host list, run nccl-tests on the cluster and report bandwidth.

    Ctrl-C asks the server to stop the run; output keeps streaming until the
    server confirms.
    """
    params = params_from_options(
        map_by=map_by,
        oob_if=oob_if,
        btl_if=btl_if,
        gid_index=gid_index,
        min_channels=min_channels,
        qps=qps,
        begin=begin,
        end=end,
        size=size,
        iters=iters,
        timeout=timeout,
        debug=debug,
        debug_level=debug_level,
        iplist=iplist,
    )

    try:
        cfg = _config(url)
        outcome = runner_app.run(cfg, params, stream=stream, color=_normalize_color(color))
    except (ConfigError, RunnerError) as e:
        raise _fail(e) from e

    code = outcome.exit_code()
    if code != 0:
        raise typer.Exit(code=code)


@app.command()
def stop(url: UrlOpt = None) -> None:
    """Ask the server to stop the currently running test."""
    try:
        resp = runner_app.stop(_config(url))
    except (ConfigError, RunnerError) as e:
        raise _fail(e) from e

    msg = f"{resp.status}" + (f": {resp.message}" if resp.message else "")
    if resp.status in {"stopped", "no_task"}:
        typer.echo(msg)
        return
    typer.secho(msg, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def precheck(
    iplist: Annotated[str, typer.Argument(help="Stored host list (file name on the server).")],
    url: UrlOpt = None,
) -> None:
    """Report hosts that already run GPU processes. Exits 3 when any node is busy."""
    try:
        result = runner_app.precheck(_config(url), iplist)
    except (ConfigError, RunnerError) as e:
        raise _fail(e) from e

    typer.echo(
        f"nodes={result.total_nodes} busy={result.busy_count} unreachable={result.error_count}"
    )
    for n in result.busy_nodes:
        typer.echo(f"busy {n.address} processes={n.process_count}")
    for n in result.error_nodes:
        typer.echo(f"unreachable {n.address} error={n.error or '-'}")

    if result.busy_count > 0:
        raise typer.Exit(code=3)


@app.command()
def defaults(url: UrlOpt = None) -> None:
    """Print the server's default parameters as the equivalent script."""
    try:
        params = runner_app.fetch_defaults(_config(url))
    except (ConfigError, RunnerError) as e:
        raise _fail(e) from e
    typer.echo(render_script(params))


@app.command()
def script(
    map_by: MapByOpt = _DEFAULTS.map_by,
    oob_if: OobIfOpt = _DEFAULTS.oob_tcp_interface,
    btl_if: BtlIfOpt = _DEFAULTS.btl_tcp_interface,
    gid_index: GidIndexOpt = _DEFAULTS.nccl_ib_gid_index,
    min_channels: MinChannelsOpt = _DEFAULTS.nccl_min_channels,
    qps: QpsOpt = _DEFAULTS.nccl_ib_qps_per_connection,
    begin: BeginOpt = "1",
    end: EndOpt = "1M",
    size: SizeOpt = True,
    iters: ItersOpt = 20,
    timeout: TimeoutOpt = _DEFAULTS.timeout,
    debug: DebugOpt = False,
    debug_level: DebugLevelOpt = "WARN",
    iplist: IplistOpt = "",
    data_dir: Annotated[
        str, typer.Option("--data-dir", help="Server data directory used for the hostfile path.")
    ] = "./data",
) -> None:
    """Print the mpirun invocation for the given parameters (nothing is executed)."""
    params = params_from_options(
        map_by=map_by,
        oob_if=oob_if,
        btl_if=btl_if,
        gid_index=gid_index,
        min_channels=min_channels,
        qps=qps,
        begin=begin,
        end=end,
        size=size,
        iters=iters,
        timeout=timeout,
        debug=debug,
        debug_level=debug_level,
        iplist=iplist,
    )
    typer.echo(render_script(params, data_dir=data_dir))


@app.command()
def parse(
    path: Annotated[
        Path,
        typer.Argument(help="Saved nccl-tests output.", exists=True, dir_okay=False, readable=True),
    ],
    raw: Annotated[
        bool, typer.Option("--raw", help="Print the accepted table rows verbatim instead.")
    ] = False,
    color: ColorOpt = "auto",
) -> None:
    """Parse a saved nccl-tests output file into a bandwidth table."""
    text = path.read_text(encoding="utf-8", errors="replace")

    if raw:
        for line in extract_raw_data_lines(text):
            typer.echo(line)
        return

    try:
        console: Console = console_for_color_mode(_normalize_color(color))
    except ConfigError as e:
        raise _fail(e) from e

    records = parse_benchmark_output(text)
    if not records:
        console.print(Text("no bandwidth rows found", style="yellow"))
        raise typer.Exit(code=1)
    console.print(records_table(records, title=path.name))
    console.print(Text(format_summary_line(records), style="bold"))


def main() -> None:
    """Programmatic entrypoint used by `project.scripts`."""
    app(prog_name="nccl-tools-runner")


if __name__ == "__main__":
    main()
