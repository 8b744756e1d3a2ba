from __future__ import annotations

import sys
import time
from collections import deque

from rich.console import Console, Group
from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.text import Text

from .coordinator import RunSnapshot, RunState

_STATE_STYLES = {
    RunState.IDLE: "dim",
    RunState.PRECHECKING: "cyan",
    RunState.RUNNING: "bold cyan",
    RunState.BUSY: "bold yellow",
    RunState.SUCCESS: "bold green",
    RunState.ERROR: "bold red",
    RunState.STOPPED: "bold yellow",
}


def console_for_color_mode(color: str) -> Console:
    mode = color.strip().lower()
    if mode == "always":
        # Emit ANSI color codes even when stdout is not a TTY (useful for piping to `tail`).
        return Console(force_terminal=True)
    if mode == "never":
        return Console(no_color=True)
    if mode == "auto":
        return Console()
    raise ValueError(f"Invalid color mode: {color!r} (expected auto|always|never)")


def _is_interactive_default() -> bool:
    # Live updates only when stdout is a TTY; otherwise plain lines.
    try:
        return sys.stdout.isatty()
    except Exception:
        return False


class RunUI:
    """
    Console view of one run.

    - If stdout is a TTY: uses Rich Live to continuously render the run state,
      the command being executed and the last N output lines.
    - If stdout is not a TTY: prints state changes and output lines as they
      arrive (CI logs keep the full benchmark output).
    """

    def __init__(self, *, tail_lines: int = 15, color: str = "auto") -> None:
        self.console = console_for_color_mode(color)
        self._live_enabled = _is_interactive_default()

        self._tail: deque[Text] = deque(maxlen=tail_lines)
        self._state = RunState.IDLE
        self._command = ""
        self._printed_output = 0

        self._spinner = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}[/bold]"),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )
        self._spinner_task_id = self._spinner.add_task("idle", total=None)

        self._live: Live | None = None
        self._last_refresh_s = 0.0

    def start(self) -> None:
        if not self._live_enabled:
            return
        self._live = Live(self._render(), console=self.console, refresh_per_second=4)
        self._live.start()

    def stop(self) -> None:
        if self._live is None:
            return
        self._live.update(self._render())
        self._live.stop()
        self._live = None

    def on_snapshot(self, snap: RunSnapshot) -> None:
        """Coordinator subscriber: mirror state, command and new output lines."""
        if snap.state is not self._state:
            self._state = snap.state
            self._spinner.update(self._spinner_task_id, description=snap.state.value)
            if not self._live_enabled:
                self.console.print(
                    Text("STATE ", style="bold") + Text(snap.state.value, style=_STATE_STYLES[snap.state])
                )

        if snap.command and snap.command != self._command:
            self._command = snap.command
            if not self._live_enabled:
                self.console.print(Text("cmd: ", style="bold") + Text(snap.command))

        if len(snap.output) > self._printed_output:
            fresh = snap.output[self._printed_output :]
            self._printed_output = len(snap.output)
            for line in fresh.splitlines():
                if self._live_enabled:
                    self._tail.append(Text(line))
                else:
                    self.console.print(Text(line), highlight=False)

        self._refresh()

    def log(self, message: str, *, style: str | None = "dim") -> None:
        """High-level log line (prints in non-TTY, shows in tail in TTY)."""
        text = Text(message)
        if style is not None:
            text.stylize(style)
        if self._live_enabled:
            self._tail.append(text)
            self._refresh()
            return
        self.console.print(text)

    def _refresh(self) -> None:
        if self._live is None:
            return
        now = time.monotonic()
        if (now - self._last_refresh_s) < 0.20:
            return
        self._last_refresh_s = now
        self._live.update(self._render())

    def _render(self) -> Group:
        return Group(self._render_state(), self._spinner, self._render_command(), self._render_tail())

    def _render_state(self) -> Text:
        return Text("STATE ", style="bold") + Text(self._state.value, style=_STATE_STYLES[self._state])

    def _render_command(self) -> Text:
        if not self._command:
            return Text("CMD -", style="dim")
        return Text("CMD ", style="bold") + Text(self._command)

    def _render_tail(self) -> Text:
        if not self._tail:
            return Text("TAIL (empty)", style="dim")

        body = Text("TAIL\n", style="bold")
        body.append(Text("\n").join(self._tail))
        return body
