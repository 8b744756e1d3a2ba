from __future__ import annotations

from typing import Final

from .params import TestParameters

MPIRUN_BIN: Final[str] = "/usr/local/sihpc/bin/mpirun"
NCCL_TEST_BIN: Final[str] = "/usr/local/sihpc/libexec/nccl-tests/nccl_test"

_CONT: Final[str] = " \\\n    "


def hostfile_path(params: TestParameters, *, data_dir: str = "./data") -> str:
    base = data_dir.rstrip("/") + "/iplist"
    if not params.iplist_file:
        return base
    return f"{base}/{params.iplist_file}"


def render_script(params: TestParameters, *, data_dir: str = "./data") -> str:
    """
    Render the mpirun invocation the server would execute for `params`.

    Preview only: nothing here is executed. Output is a pure function of the
    inputs, one option per continuation line:

        /usr/local/sihpc/bin/mpirun \\
            --allow-run-as-root \\
            ...
            /usr/local/sihpc/libexec/nccl-tests/nccl_test -b 1 -e 1M -n 20
    """
    opts: list[str] = [
        "--allow-run-as-root",
        f"--hostfile {hostfile_path(params, data_dir=data_dir)}",
        f"--map-by {params.map_by}",
        f"--mca oob_tcp_if_include {params.oob_tcp_interface}",
        "--mca pml ^ucx",
        "--mca btl self,tcp",
        f"--mca btl_tcp_if_include {params.btl_tcp_interface}",
        "--mca routed direct",
        "--mca plm_rsh_no_tree_spawn 1",
        "-x UCX_TLS=tcp",
    ]

    if params.enable_debug and params.nccl_debug_level is not None:
        opts.append(f"-x NCCL_DEBUG={params.nccl_debug_level.value}")

    opts.extend(
        [
            f"-x NCCL_IB_GID_INDEX={params.nccl_ib_gid_index}",
            f"-x NCCL_MIN_NCHANNELS={params.nccl_min_channels}",
            f"-x NCCL_IB_QPS_PER_CONNECTION={params.nccl_ib_qps_per_connection}",
        ]
    )

    test_cmd = NCCL_TEST_BIN
    if params.test_size_begin is not None:
        test_cmd += f" -b {params.test_size_begin.token}"
    if params.test_size_end is not None:
        test_cmd += f" -e {params.test_size_end.token}"
    if params.iters_enabled:
        test_cmd += f" -n {params.iters}"
    opts.append(test_cmd)

    return MPIRUN_BIN + _CONT + _CONT.join(opts)
