import importlib
import json

import pytest

from goodreads_rec import config


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("GOODREADS_REC_REQUEST_SPACING", "2.5")
    monkeypatch.setenv("GOODREADS_REC_MAX_RETRIES", "0")  # min clamp
    monkeypatch.setenv("GOODREADS_REC_SHELF_PERCENTILE", "-5")  # min clamp

    cfg = importlib.reload(config)

    assert cfg.REQUEST_SPACING == 2.5
    assert cfg.MAX_HTTP_RETRIES == 1
    assert cfg.DEFAULT_SHELF_PERCENTILE == 0


def test_db_path_respects_env(monkeypatch, tmp_path):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("GOODREADS_REC_DB", str(db_path))

    cfg = importlib.reload(config)

    assert cfg.DB_PATH == db_path


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("GOODREADS_REC_REQUEST_SPACING", "not-a-float")
    monkeypatch.setenv("GOODREADS_REC_MAX_RETRIES", "bad-int")
    monkeypatch.setenv("GOODREADS_REC_SHELF_PERCENTILE", "oops")

    cfg = importlib.reload(config)

    assert cfg.REQUEST_SPACING == 1.0
    assert cfg.MAX_HTTP_RETRIES == 3
    assert cfg.DEFAULT_SHELF_PERCENTILE == 75


def test_load_config_reads_all_keys(fresh_config, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "ignoreShelves": ["owned"],
        "mergeShelves": {"sci-fi": ["science-fiction", "scifi"]},
        "mergePublishers": {"Tor": ["Tor Books"]},
        "shelfPercentile": 40,
    }))

    loaded = fresh_config.load_config(path)

    assert loaded.ignore_shelves == ["owned"]
    assert loaded.merge_shelves == {"sci-fi": ["science-fiction", "scifi"]}
    assert loaded.merge_publishers == {"Tor": ["Tor Books"]}
    assert loaded.shelf_percentile == 40


def test_load_config_missing_file(fresh_config, tmp_path):
    path = tmp_path / "absent.json"

    with pytest.raises(fresh_config.ConfigError, match="No config file found"):
        fresh_config.load_config(path)

    defaults = fresh_config.load_config(path, allow_missing=True)
    assert defaults == fresh_config.Configuration()


def test_load_config_rejects_invalid_json(fresh_config, tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(fresh_config.ConfigError, match="Invalid JSON"):
        fresh_config.load_config(path)


@pytest.mark.parametrize("payload, message", [
    ({"colour": True}, "unknown keys: colour"),
    ({"ignoreShelves": "owned"}, "ignoreShelves must be a list of strings"),
    ({"mergeShelves": {"sci-fi": [1]}}, "mergeShelves.sci-fi must be a list of strings"),
    ({"mergePublishers": []}, "mergePublishers must be an object"),
    ({"shelfPercentile": 101}, "shelfPercentile must be an integer"),
    ({"shelfPercentile": True}, "shelfPercentile must be an integer"),
])
def test_load_config_rejects_invalid_values(fresh_config, tmp_path, payload, message):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload))

    with pytest.raises(fresh_config.ConfigError, match=message):
        fresh_config.load_config(path)


def test_required_environment_variables(monkeypatch):
    monkeypatch.delenv("GOODREADS_API_KEY", raising=False)
    monkeypatch.setenv("GOODREADS_USER_ID", "42")

    with pytest.raises(config.ConfigError, match="GOODREADS_API_KEY"):
        config.get_api_key()

    assert config.get_user_id() == "42"
