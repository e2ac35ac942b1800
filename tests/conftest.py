"""Pytest configuration for repository test runs."""

from __future__ import annotations

import sys
from pathlib import Path


def pytest_sessionstart() -> None:
    """Add src and project root to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    for import_path in (project_root, project_root / "src"):
        if str(import_path) not in sys.path:
            sys.path.insert(0, str(import_path))
