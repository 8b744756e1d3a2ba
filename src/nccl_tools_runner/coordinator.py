"""
Run lifecycle: precheck -> run -> success / error / stopped.

Provides:
- RunState: the lifecycle states.
- RunCoordinator: owns one run attempt at a time and exposes its state,
  accumulated output/command text and the derived bandwidth records.
- RunSnapshot / BusyNode: read-only observations for callers (UI, CLI).

The coordinator is UI-agnostic: callers either poll `snapshot()` or register a
callback with `subscribe()`.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Protocol

from .client import PrecheckResult, RunResponse, StopResponse
from .errors import PreconditionError, RunActiveError, TransportError
from .params import TestParameters, validate_parameters
from .parse import BenchmarkRecord, parse_benchmark_output
from .payload import decode_payload
from .stream import (
    EVENT_COMMAND,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_OUTPUT,
    EventFrameDecoder,
    LineReassembler,
    StreamEvent,
)


class RunState(str, enum.Enum):
    IDLE = "idle"
    PRECHECKING = "prechecking"
    BUSY = "busy"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def active(self) -> bool:
        return self in (RunState.PRECHECKING, RunState.RUNNING)


_TERMINAL_STATES = frozenset({RunState.BUSY, RunState.SUCCESS, RunState.ERROR, RunState.STOPPED})


class RunTransport(Protocol):
    """What the coordinator needs from the server side (see `BenchClient`)."""

    async def precheck(self, filename: str) -> PrecheckResult: ...

    async def run(self, params: TestParameters) -> RunResponse: ...

    def stream_run(self, params: TestParameters) -> AsyncIterator[str]: ...

    async def stop(self) -> StopResponse: ...


@dataclass(frozen=True, slots=True)
class BusyNode:
    """A host already running GPU processes; blocks a new run."""

    address: str
    process_count: int


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    state: RunState
    output: str
    command: str
    message: str | None
    busy_nodes: tuple[BusyNode, ...]
    stop_requested: bool

    @property
    def records(self) -> list[BenchmarkRecord]:
        return parse_benchmark_output(self.output)


class RunCoordinator:
    """
    State machine for one run attempt at a time.

    Transitions:
        idle -> prechecking -> error | busy | running
        running -> success | error | stopped

    `start()` drives the whole attempt and returns once it reaches a terminal
    state. `stop()` is cooperative: it asks the server to kill the run and
    returns; the read loop keeps consuming frames until the server ends the
    stream.
    """

    def __init__(
        self,
        transport: RunTransport,
        *,
        on_log: Callable[[str], None] | None = None,
    ) -> None:
        self._transport = transport
        self._on_log = on_log
        self._listeners: list[Callable[[RunSnapshot], None]] = []

        self._state = RunState.IDLE
        self._output = ""
        self._command = ""
        self._message: str | None = None
        self._busy_nodes: tuple[BusyNode, ...] = ()
        self._stop_requested = False
        self._stop_call: asyncio.Task[StopResponse] | None = None

    # ---- observations ----

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def output(self) -> str:
        return self._output

    @property
    def command(self) -> str:
        return self._command

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def busy_nodes(self) -> tuple[BusyNode, ...]:
        return self._busy_nodes

    @property
    def records(self) -> list[BenchmarkRecord]:
        return parse_benchmark_output(self._output)

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            state=self._state,
            output=self._output,
            command=self._command,
            message=self._message,
            busy_nodes=self._busy_nodes,
            stop_requested=self._stop_requested,
        )

    def subscribe(self, callback: Callable[[RunSnapshot], None]) -> Callable[[], None]:
        """Call `callback(snapshot)` after every change. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(callback)

        return unsubscribe

    # ---- commands ----

    async def start(self, params: TestParameters, *, stream: bool = True) -> RunSnapshot:
        """
        Run one attempt to completion and return its terminal snapshot.

        Raises RunActiveError if an attempt is already prechecking or running.
        Every other failure is reported through the terminal state and message.
        """
        if self._state.active:
            raise RunActiveError(f"a run is already in progress (state={self._state.value})")

        self._reset()
        self._set_state(RunState.PRECHECKING)

        if not params.iplist_file.strip():
            self._finish(RunState.ERROR, "precondition failed: iplist_file is required")
            return self.snapshot()
        try:
            validate_parameters(params)
        except PreconditionError as e:
            self._finish(RunState.ERROR, f"precondition failed: {e}")
            return self.snapshot()

        try:
            pre = await self._transport.precheck(params.iplist_file)
        except TransportError as e:
            self._finish(RunState.ERROR, f"precheck failed: {e}")
            return self.snapshot()

        if pre.error_count > 0:
            unreachable = ", ".join(n.address for n in pre.error_nodes) or "-"
            self._log(f"precheck: {pre.error_count} node(s) could not be probed: {unreachable}")

        if pre.busy_count > 0:
            self._busy_nodes = tuple(
                BusyNode(address=n.address, process_count=n.process_count) for n in pre.busy_nodes
            )
            self._finish(RunState.BUSY, _busy_message(pre.busy_count, self._busy_nodes))
            return self.snapshot()

        self._log(f"precheck: {pre.total_nodes} node(s) idle")
        self._set_state(RunState.RUNNING)

        if stream:
            await self._run_stream(params)
        else:
            await self._run_blocking(params)
        return self.snapshot()

    async def stop(self) -> StopResponse:
        """
        Ask the server to cancel the current run.

        Returns a `no_task` response without contacting the server when no run
        is active. TransportError from the stop call propagates.
        """
        if self._state is not RunState.RUNNING:
            return StopResponse(status="no_task", message="No running NCCL test to stop")

        self._stop_requested = True
        self._log("stop: requesting cancellation")
        self._notify()

        # The server may kill the process and emit the final frame before it
        # answers; the read loop awaits this call to classify that frame.
        self._stop_call = asyncio.ensure_future(self._transport.stop())
        resp = await self._stop_call
        self._log(f"stop: server answered {resp.status}" + (f" ({resp.message})" if resp.message else ""))
        return resp

    # ---- run modes ----

    async def _run_stream(self, params: TestParameters) -> None:
        reassembler = LineReassembler()
        decoder = EventFrameDecoder()
        try:
            async with contextlib.aclosing(self._transport.stream_run(params)) as chunks:
                async for chunk in chunks:
                    for line in reassembler.feed(chunk):
                        ev = decoder.feed(line)
                        if ev is not None:
                            await self._dispatch(ev)
                        if self._state.terminal:
                            return
        except TransportError as e:
            await self._end_failed(str(e))
            return

        # Transport ended without a terminal frame.
        dangling = reassembler.close()
        if dangling:
            self._log(f"stream: dropped unterminated line ({len(dangling)} chars)")
        if await self._stop_confirmed():
            self._finish(RunState.STOPPED, "NCCL test stopped")
        else:
            self._finish(RunState.ERROR, "stream ended before completion")

    async def _run_blocking(self, params: TestParameters) -> None:
        try:
            resp = await self._transport.run(params)
        except TransportError as e:
            await self._end_failed(str(e))
            return

        self._command = resp.command
        self._output = resp.output
        if resp.ok:
            self._finish(RunState.SUCCESS, None)
            return
        await self._end_failed(resp.error or f"run {resp.status}")

    async def _dispatch(self, ev: StreamEvent) -> None:
        if not ev.known:
            self._log(f"stream: ignoring {ev.kind or 'untyped'!r} frame")
            return
        if ev.kind == EVENT_COMMAND:
            self._command = decode_payload(ev.payload).text()
            self._notify()
        elif ev.kind == EVENT_OUTPUT:
            self._output += decode_payload(ev.payload).text() + "\n"
            self._notify()
        elif ev.kind == EVENT_DONE:
            self._finish(RunState.SUCCESS, None)
        elif ev.kind == EVENT_ERROR:
            await self._end_failed(decode_payload(ev.payload).message())

    # ---- state helpers ----

    async def _stop_confirmed(self) -> bool:
        """Wait for an in-flight stop request; True if the server confirmed it."""
        if self._stop_call is None:
            return False
        try:
            resp = await self._stop_call
        except TransportError:
            return False
        return resp.stopped

    async def _end_failed(self, message: str) -> None:
        # After a confirmed stop the server reports the killed process as an error.
        if await self._stop_confirmed():
            self._finish(RunState.STOPPED, message)
        else:
            self._finish(RunState.ERROR, message)

    def _reset(self) -> None:
        self._state = RunState.IDLE
        self._output = ""
        self._command = ""
        self._message = None
        self._busy_nodes = ()
        self._stop_requested = False
        self._stop_call = None

    def _set_state(self, state: RunState) -> None:
        prev = self._state
        self._state = state
        self._log(f"state: {prev.value} -> {state.value}")
        self._notify()

    def _finish(self, state: RunState, message: str | None) -> None:
        self._message = message
        self._set_state(state)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for cb in list(self._listeners):
            with suppress(Exception):
                cb(snap)

    def _log(self, message: str) -> None:
        if self._on_log is not None:
            self._on_log(message)


def _busy_message(busy_count: int, nodes: tuple[BusyNode, ...]) -> str:
    listed = ", ".join(f"{n.address} ({n.process_count} GPU process(es))" for n in nodes)
    return f"{busy_count} node(s) busy: {listed}" if listed else f"{busy_count} node(s) busy"
