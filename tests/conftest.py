from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure the project root is importable when running `pytest` via its entrypoint
# (e.g., `uv run --extra test pytest`), where `sys.path[0]` may not be the repo root.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are cached per path; keep tests independent"""
    from keepform.config.settings import invalidate_settings_cache

    invalidate_settings_cache()
    yield
    invalidate_settings_cache()
