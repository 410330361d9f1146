from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_on_path() -> None:
    root = Path(__file__).resolve().parent
    if str(root) not in sys.path:
        # Lets `python main.py` work from a checkout without `pip install -e .`.
        sys.path.append(str(root))


def main() -> int:
    _ensure_repo_on_path()
    from cheddar_live.runtime.lifecycle import main as runtime_main

    return runtime_main()


if __name__ == "__main__":
    raise SystemExit(main())
