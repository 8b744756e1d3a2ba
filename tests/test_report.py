from __future__ import annotations

import pytest

from nccl_tools_runner.app import RunOutcome
from nccl_tools_runner.coordinator import RunSnapshot, RunState
from nccl_tools_runner.parse import BenchmarkRecord
from nccl_tools_runner.report import format_size, format_summary_line, records_table


@pytest.mark.parametrize(
    ("n", "expected"),
    [
        (512, "512"),
        (8192, "8K"),
        (1048576, "1.0M"),
    ],
)
def test_format_size(n: int, expected: str) -> None:
    assert format_size(n) == expected


def test_summary_line() -> None:
    records = [
        BenchmarkRecord(1024, 256, "float", 1.0, 2.0, 1.0, 3.0),
        BenchmarkRecord(2048, 512, "float", 1.0, 4.0, 1.0, 5.0),
    ]
    assert format_summary_line(records) == (
        "summary: rows=2 | busbw_gbps out_max=4.00 in_max=5.00 out_avg=3.00 in_avg=4.00"
    )
    assert format_summary_line([]) == "summary: rows=0"
    assert records_table(records).row_count == 2


@pytest.mark.parametrize(
    ("state", "code"),
    [
        (RunState.SUCCESS, 0),
        (RunState.ERROR, 1),
        (RunState.BUSY, 3),
        (RunState.STOPPED, 130),
    ],
)
def test_run_outcome_exit_codes(state: RunState, code: int) -> None:
    snap = RunSnapshot(
        state=state, output="", command="", message=None, busy_nodes=(), stop_requested=False
    )
    outcome = RunOutcome(snapshot=snap)
    assert outcome.exit_code() == code
    assert outcome.ok() is (state is RunState.SUCCESS)
