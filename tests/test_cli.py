from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from nccl_tools_runner.cli import app
from nccl_tools_runner.script import NCCL_TEST_BIN

runner = CliRunner()

_FIXTURE = Path(__file__).parent / "fixtures" / "nccl_allreduce_stdout.txt"


def test_script_defaults() -> None:
    result = runner.invoke(app, ["script", "--iplist", "hosts.txt"])
    assert result.exit_code == 0, result.output
    assert "--hostfile ./data/iplist/hosts.txt" in result.output
    assert result.output.rstrip().endswith(f"{NCCL_TEST_BIN} -b 1 -e 1M -n 20")


def test_script_without_sizes_or_iters() -> None:
    result = runner.invoke(app, ["script", "--no-size", "--iters", "0", "--debug", "--debug-level", "trace"])
    assert result.exit_code == 0, result.output
    assert "-x NCCL_DEBUG=TRACE" in result.output
    assert result.output.rstrip().endswith(NCCL_TEST_BIN)


def test_script_rejects_bad_size() -> None:
    result = runner.invoke(app, ["script", "--begin", "8X"])
    assert result.exit_code == 2


def test_parse_prints_table_and_summary() -> None:
    result = runner.invoke(app, ["parse", str(_FIXTURE), "--color", "never"])
    assert result.exit_code == 0, result.output
    assert "summary:" in result.output
    assert "rows=30" in result.output


def test_parse_raw_lines() -> None:
    result = runner.invoke(app, ["parse", str(_FIXTURE), "--raw"])
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert len(lines) == 30
    assert lines[-1].split()[0] == "1073741824"


def test_parse_without_table_exits_nonzero(tmp_path: Path) -> None:
    p = tmp_path / "empty.txt"
    p.write_text("NCCL version 2.27.7+cuda12.4\n", encoding="utf-8")
    result = runner.invoke(app, ["parse", str(p), "--color", "never"])
    assert result.exit_code == 1


def test_run_without_host_list_reports_precondition_error() -> None:
    result = runner.invoke(
        app,
        ["run", "--url", "http://127.0.0.1:9", "--iplist", "", "--color", "never"],
        env={"NCCL_TOOLS_IPLIST": ""},
    )
    assert result.exit_code == 1, result.output
    assert "precondition failed: iplist_file is required" in result.output


def test_invalid_url_is_config_error() -> None:
    result = runner.invoke(app, ["stop", "--url", "dash.local:9000"])
    assert result.exit_code == 2
    assert "CONFIG ERROR" in result.output
