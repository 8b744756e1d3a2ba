from __future__ import annotations

from dataclasses import replace

from nccl_tools_runner.params import DebugLevel, MessageSize, SizeUnit, default_parameters
from nccl_tools_runner.script import MPIRUN_BIN, NCCL_TEST_BIN, hostfile_path, render_script


def test_render_script_defaults() -> None:
    p = replace(default_parameters(), iplist_file="hosts.txt")
    lines = render_script(p).split(" \\\n    ")

    assert lines[0] == MPIRUN_BIN
    assert lines[1] == "--allow-run-as-root"
    assert "--hostfile ./data/iplist/hosts.txt" in lines
    assert "--map-by ppr:8:node" in lines
    assert "--mca oob_tcp_if_include bond0" in lines
    assert "--mca btl_tcp_if_include bond0" in lines
    assert "-x NCCL_IB_GID_INDEX=3" in lines
    assert "-x NCCL_MIN_NCHANNELS=32" in lines
    assert "-x NCCL_IB_QPS_PER_CONNECTION=8" in lines
    assert lines[-1] == f"{NCCL_TEST_BIN} -b 1 -e 1M -n 20"
    assert not any(line.startswith("-x NCCL_DEBUG=") for line in lines)


def test_render_script_is_deterministic() -> None:
    p = replace(default_parameters(), iplist_file="hosts.txt", enable_debug=True)
    assert render_script(p) == render_script(replace(p))


def test_debug_line_requires_toggle_and_level() -> None:
    base = default_parameters()
    on = render_script(replace(base, enable_debug=True, nccl_debug_level=DebugLevel.INFO))
    no_level = render_script(replace(base, enable_debug=True, nccl_debug_level=None))
    off = render_script(replace(base, enable_debug=False, nccl_debug_level=DebugLevel.TRACE))

    assert "-x NCCL_DEBUG=INFO" in on
    assert "NCCL_DEBUG=" not in no_level
    assert "NCCL_DEBUG=" not in off


def test_size_and_iters_flags_are_conditional() -> None:
    p = replace(default_parameters(), test_size_begin=None, test_size_end=None, iters=None)
    assert render_script(p).endswith("\n    " + NCCL_TEST_BIN)

    p = replace(
        default_parameters(),
        test_size_begin=MessageSize(8, SizeUnit.KB),
        test_size_end=MessageSize(1, SizeUnit.GB),
        iters=0,
    )
    assert render_script(p).endswith(f"{NCCL_TEST_BIN} -b 8K -e 1G")


def test_hostfile_path() -> None:
    p = default_parameters()
    assert hostfile_path(p) == "./data/iplist"
    assert hostfile_path(replace(p, iplist_file="rack1"), data_dir="/srv/data/") == "/srv/data/iplist/rack1"
