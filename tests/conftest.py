import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with temporary paths to keep tests isolated.
    """
    monkeypatch.setenv("GOODREADS_REC_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("GOODREADS_REC_DB", str(tmp_path / "test.db"))
    import goodreads_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    monkeypatch.setenv("GOODREADS_REC_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("GOODREADS_REC_DB", str(tmp_path / "test.db"))

    import goodreads_rec.config as config
    import goodreads_rec.database as database

    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()
