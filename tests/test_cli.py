import json

import pytest

from callworker.cli import main
from callworker.core.kv_store import SQLiteKeyValueStore


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for var in ("SIM_NUMBER_1", "SIM_NUMBER_2", "CALL_WORKER_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    db_path = tmp_path / "state" / "worker.db"
    path = tmp_path / "call-worker.yaml"
    path.write_text(
        "lease:\n"
        f"  db_path: {db_path}\n"
        "identities:\n"
        "  - \"+15550000001\"\n"
    )
    return path, db_path


def test_status_prints_lease_and_identities(config_file, capsys):
    path, db_path = config_file
    kv = SQLiteKeyValueStore(str(db_path))
    kv.set_sync("isWorkInProgress", True)
    kv.set_sync("workStartTime", 1_700_000_000_000)
    kv.set_sync("lastFileName", "job-42.mp3")
    capsys.readouterr()

    assert main(["--config", str(path), "status"]) == 0

    out = capsys.readouterr().out
    status = json.loads(out[out.index("{"):])
    assert status["artifact_name"] == "job-42.mp3"
    assert status["identities"] == ["+15550000001", ""]


def test_release_clears_lease(config_file):
    path, db_path = config_file
    kv = SQLiteKeyValueStore(str(db_path))
    kv.set_sync("isWorkInProgress", True)
    kv.set_sync("workStartTime", 1)
    kv.set_sync("lastFileName", "job-42.mp3")

    assert main(["--config", str(path), "release"]) == 0

    assert kv.get_sync("isWorkInProgress") is None
    assert kv.get_sync("workStartTime") is None
    assert kv.get_sync("lastFileName") == "job-42.mp3"


def test_set_identity_persists_slot(config_file):
    path, db_path = config_file

    assert main(["--config", str(path), "set-identity", "2", "+15550000002"]) == 0

    assert SQLiteKeyValueStore(str(db_path)).get_sync("simNumber2") == "+15550000002"


def test_invalid_config_exits_with_2(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("polling:\n  fast_interval_sec: soon\n")

    assert main(["--config", str(path), "status"]) == 2
    assert "Configuration error" in capsys.readouterr().err
