"""
nccl-tools-runner (Python)

Client for the NCCL test dashboard server: launches nccl-tests runs on a remote
cluster, follows their event stream and turns the textual output into
bandwidth records.

Public API surface is intentionally small; prefer using the CLI entrypoint.
"""

from __future__ import annotations

__all__ = [
    "__version__",
]

# Keep in sync with pyproject.toml.
__version__ = "0.1.0"
