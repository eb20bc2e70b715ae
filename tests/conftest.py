from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from enervisio.database import Database  # noqa: E402


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "enervisio.sqlite3", timezone_name="Asia/Manila")
    db.initialize()
    return db
