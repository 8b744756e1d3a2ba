from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from dataclasses import dataclass

from rich.text import Text

from .client import BenchClient, PrecheckResult, StopResponse
from .config import ClientConfig, validate_config
from .coordinator import RunCoordinator, RunSnapshot, RunState
from .errors import TransportError
from .params import TestParameters
from .report import format_summary_line, records_table
from .ui import RunUI

_EXIT_CODES = {
    RunState.SUCCESS: 0,
    RunState.ERROR: 1,
    RunState.BUSY: 3,
    RunState.STOPPED: 130,
}


@dataclass(frozen=True, slots=True)
class RunOutcome:
    snapshot: RunSnapshot

    def ok(self) -> bool:
        return self.snapshot.state is RunState.SUCCESS

    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.snapshot.state, 1)


def run(
    cfg: ClientConfig,
    params: TestParameters,
    *,
    stream: bool | None = None,
    color: str = "auto",
) -> RunOutcome:
    """
    Execute one run attempt against the dashboard server and print a report.

    This coordinates:
      - config validation
      - precheck of the host list (busy nodes abort the attempt)
      - the run itself, streamed or blocking
      - Ctrl-C as a cooperative stop request
      - the final bandwidth table

    The caller (CLI) is responsible for translating the outcome into an exit code.
    """
    validate_config(cfg)
    use_stream = cfg.stream if stream is None else stream
    return asyncio.run(_run_async(cfg, params, stream=use_stream, color=color))


async def _run_async(
    cfg: ClientConfig,
    params: TestParameters,
    *,
    stream: bool,
    color: str,
) -> RunOutcome:
    ui = RunUI(color=color)
    ui.start()
    stopped = False
    try:
        async with BenchClient(cfg) as client:
            coord = RunCoordinator(client, on_log=ui.log)
            coord.subscribe(ui.on_snapshot)

            loop = asyncio.get_running_loop()
            stop_tasks: set[asyncio.Task[None]] = set()

            def request_stop() -> None:
                task = loop.create_task(_stop_quietly(coord, ui))
                stop_tasks.add(task)
                task.add_done_callback(stop_tasks.discard)

            # Not available on Windows event loops; Ctrl-C then just aborts.
            with suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signal.SIGINT, request_stop)
            try:
                snap = await coord.start(params, stream=stream)
            finally:
                with suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(signal.SIGINT)
                if stop_tasks:
                    await asyncio.gather(*stop_tasks, return_exceptions=True)

        ui.stop()
        stopped = True
        _print_report(ui, snap)
        return RunOutcome(snapshot=snap)
    finally:
        if not stopped:
            ui.stop()


async def _stop_quietly(coord: RunCoordinator, ui: RunUI) -> None:
    try:
        resp = await coord.stop()
    except TransportError as e:
        ui.log(f"stop failed: {e}", style="red")
        return
    if resp.status == "no_task":
        ui.log("stop: no running test", style="yellow")


def _print_report(ui: RunUI, snap: RunSnapshot) -> None:
    console = ui.console

    if snap.command:
        console.print(Text("COMMAND:", style="bold cyan"))
        console.print(Text(snap.command))

    if snap.state is RunState.BUSY:
        console.print(Text("BUSY NODES:", style="bold yellow"))
        for n in snap.busy_nodes:
            console.print(Text(f"- {n.address}: {n.process_count} GPU process(es)"))

    records = snap.records
    if records:
        console.print(records_table(records, title="bandwidth (GB/s)"))
        console.print(Text(format_summary_line(records), style="bold"))

    style = {
        RunState.SUCCESS: "bold green",
        RunState.BUSY: "bold yellow",
        RunState.STOPPED: "bold yellow",
    }.get(snap.state, "bold red")
    line = f"RESULT: {snap.state.value.upper()}"
    if snap.message:
        line += f" ({snap.message})"
    console.print(Text(line, style=style))


def stop(cfg: ClientConfig) -> StopResponse:
    """One-shot stop request (for a run started elsewhere)."""
    validate_config(cfg)

    async def _go() -> StopResponse:
        async with BenchClient(cfg) as client:
            return await client.stop()

    return asyncio.run(_go())


def precheck(cfg: ClientConfig, filename: str) -> PrecheckResult:
    validate_config(cfg)

    async def _go() -> PrecheckResult:
        async with BenchClient(cfg) as client:
            return await client.precheck(filename)

    return asyncio.run(_go())


def fetch_defaults(cfg: ClientConfig) -> TestParameters:
    validate_config(cfg)

    async def _go() -> TestParameters:
        async with BenchClient(cfg) as client:
            return await client.defaults()

    return asyncio.run(_go())
