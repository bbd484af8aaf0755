from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("CALENDAR_STORE", "memory")
os.environ.setdefault("REMINDERS_ENABLED", "0")

from teamcal.core.store import get_store  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_store():
    get_store.cache_clear()
    yield get_store()
    get_store.cache_clear()
