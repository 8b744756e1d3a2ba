from __future__ import annotations

from collections.abc import Sequence

from rich.table import Table

from .parse import BenchmarkRecord, summarize_records


def format_size(n: int) -> str:
    """Short size label: 512, 8K, 1.0M (binary units)."""
    if n >= 1024 * 1024:
        return f"{n / (1024 * 1024):.1f}M"
    if n >= 1024:
        return f"{n / 1024:.0f}K"
    return str(n)


def _fmt_bw(v: float) -> str:
    return f"{v:.2f}"


def records_table(records: Sequence[BenchmarkRecord], *, title: str | None = None) -> Table:
    table = Table(title=title, show_lines=False, header_style="bold")
    table.add_column("size", justify="right")
    table.add_column("count", justify="right")
    table.add_column("type")
    table.add_column("out algbw", justify="right")
    table.add_column("out busbw", justify="right", style="cyan")
    table.add_column("in algbw", justify="right")
    table.add_column("in busbw", justify="right", style="cyan")

    for r in records:
        table.add_row(
            format_size(r.size),
            str(r.count),
            r.type_label,
            _fmt_bw(r.out_alg_bw),
            _fmt_bw(r.out_bus_bw),
            _fmt_bw(r.in_alg_bw),
            _fmt_bw(r.in_bus_bw),
        )
    return table


def format_summary_line(records: Sequence[BenchmarkRecord]) -> str:
    s = summarize_records(records)
    if s is None:
        return "summary: rows=0"
    return (
        "summary: "
        f"rows={s.rows} | "
        "busbw_gbps "
        f"out_max={_fmt_bw(s.max_out_bus_bw)} in_max={_fmt_bw(s.max_in_bus_bw)} "
        f"out_avg={_fmt_bw(s.avg_out_bus_bw)} in_avg={_fmt_bw(s.avg_in_bus_bw)}"
    )


__all__ = [
    "format_size",
    "format_summary_line",
    "records_table",
]
