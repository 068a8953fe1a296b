from __future__ import annotations

import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_str = str(repo_root / "src")
    if src_str not in sys.path:
        sys.path.insert(0, src_str)

    # Shared fakes (`from fakes import ...`) live next to this file.
    tests_root_str = str(Path(__file__).resolve().parent)
    if tests_root_str not in sys.path:
        sys.path.insert(0, tests_root_str)


_ensure_src_on_path()
