from __future__ import annotations

from .cli import app


def main() -> None:
    """Console entrypoint for `python -m nccl_tools_runner`."""
    app()


if __name__ == "__main__":
    main()
