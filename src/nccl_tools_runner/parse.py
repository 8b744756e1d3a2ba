from __future__ import annotations

import math
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Final

# Header of the nccl-tests result table, e.g.
#   #       size         count      type   redop    root     time   algbw   busbw #wrong ...
_HEADER_LABEL: Final[str] = "#       size"
_HEADER_COUNT: Final[str] = "count"

# Summary lines that follow the table.
_FOOTER_MARKERS: Final[tuple[str, ...]] = ("# Out of bounds", "# Avg bus bandwidth")

_COMMENT_MARKER: Final[str] = "#"
_MIN_FIELDS: Final[int] = 12

_INT_RE: Final[re.Pattern[str]] = re.compile(r"^[+-]?\d+$")


@dataclass(frozen=True, slots=True)
class BenchmarkRecord:
    """
    One row of the nccl-tests table.

    Columns (0-based token index):
        0 size  1 count  2 type  3 redop  4 root
        5 time  6 algbw  7 busbw  8 #wrong      (out-of-place)
        9 time 10 algbw 11 busbw 12 #wrong      (in-place)
    Bandwidths are GB/s as printed by nccl-tests.
    """

    size: int
    count: int
    type_label: str
    out_alg_bw: float
    out_bus_bw: float
    in_alg_bw: float
    in_bus_bw: float


@dataclass(frozen=True, slots=True)
class BandwidthSummary:
    rows: int
    max_out_bus_bw: float
    max_in_bus_bw: float
    avg_out_bus_bw: float
    avg_in_bus_bw: float


def parse_benchmark_output(text: str) -> list[BenchmarkRecord]:
    """
    Extract bandwidth rows from accumulated nccl-tests output.

    Pure and idempotent: the full text is rescanned on every call. Malformed rows
    never raise; they are dropped (bad size) or zero-filled (bad bandwidth).
    """
    records: list[BenchmarkRecord] = []
    for fields in _iter_table_rows(text):
        rec = _record_from_fields(fields)
        if rec is not None:
            records.append(rec)
    return records


def extract_raw_data_lines(text: str) -> list[str]:
    """Return the raw table lines that `parse_benchmark_output` turns into records."""
    out: list[str] = []
    for line in _iter_table_lines(text):
        if _record_from_fields(split_fields(line)) is not None:
            out.append(line)
    return out


def _iter_table_lines(text: str) -> Iterator[str]:
    parsing = False
    for line in text.split("\n"):
        if _is_table_header(line):
            parsing = True
            continue
        if not parsing:
            continue
        if _is_table_end(line):
            break

        stripped = line.strip()
        if not stripped or stripped.startswith(_COMMENT_MARKER):
            continue
        yield line


def _iter_table_rows(text: str) -> Iterator[list[str]]:
    for line in _iter_table_lines(text):
        fields = split_fields(line)
        if len(fields) >= _MIN_FIELDS:
            yield fields


def _is_table_header(line: str) -> bool:
    return _HEADER_LABEL in line and _HEADER_COUNT in line


def _is_table_end(line: str) -> bool:
    return any(marker in line for marker in _FOOTER_MARKERS)


def split_fields(line: str) -> list[str]:
    """Whitespace-split, dropping empty tokens."""
    return line.split()


def _record_from_fields(fields: Sequence[str]) -> BenchmarkRecord | None:
    if len(fields) < _MIN_FIELDS:
        return None

    size = _parse_int(fields[0])
    if size is None or size <= 0:
        return None

    count = _parse_int(fields[1])

    return BenchmarkRecord(
        size=size,
        count=count if count is not None else 0,
        type_label=fields[2],
        out_alg_bw=_parse_bw(fields[6]),
        out_bus_bw=_parse_bw(fields[7]),
        in_alg_bw=_parse_bw(fields[10]),
        in_bus_bw=_parse_bw(fields[11]),
    )


def _parse_int(token: str) -> int | None:
    if not _INT_RE.match(token):
        return None
    return int(token)


def _parse_bw(token: str) -> float:
    """Parse a bandwidth column; anything that is not a finite number counts as 0."""
    try:
        v = float(token)
    except ValueError:
        return 0.0
    if not math.isfinite(v):
        return 0.0
    return v


def summarize_records(records: Sequence[BenchmarkRecord]) -> BandwidthSummary | None:
    """Peak and mean bus bandwidth over all rows; None for an empty table."""
    if not records:
        return None
    n = len(records)
    return BandwidthSummary(
        rows=n,
        max_out_bus_bw=max(r.out_bus_bw for r in records),
        max_in_bus_bw=max(r.in_bus_bw for r in records),
        avg_out_bus_bw=sum(r.out_bus_bw for r in records) / n,
        avg_in_bus_bw=sum(r.in_bus_bw for r in records) / n,
    )
