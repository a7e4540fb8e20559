import json
import os

import pytest

from lscore.storage import StorageManager
from lscore.versions import Game, PackageVersion, DocumentVersion


def test_defaults(storage):
    assert os.path.isdir(storage.data_dir)
    assert storage.config["log_level"] == "INFO"
    assert storage.config["game"] == "BALDURS_GATE_3"
    assert storage.game is Game.BALDURS_GATE_3


def test_save_and_reload(tmp_path):
    data_dir = str(tmp_path / "data")
    storage = StorageManager(data_dir)
    storage.save_config({"game": "DivinityOriginalSin2", "log_level": "DEBUG"})

    reloaded = StorageManager(data_dir)
    assert reloaded.config["log_level"] == "DEBUG"
    assert reloaded.game is Game.DIVINITY_ORIGINAL_SIN_2
    # Defaults still fill in keys the file doesn't have
    assert "extract_dir" in reloaded.config


def test_unreadable_config_falls_back(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "config.json").write_text("{not json")
    storage = StorageManager(str(data_dir))
    assert storage.config["log_level"] == "INFO"


def test_extract_dir_for(storage):
    storage.save_config({"extract_dir": "/tmp/out"})
    assert storage.extract_dir_for("/games/Data/Gustav.pak") == os.path.join("/tmp/out", "Gustav")


def test_auto_detect_missing(storage, monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("ProgramFiles(x86)", str(tmp_path))
    assert storage.try_auto_detect_game(Game.BALDURS_GATE_3) == ""


def test_config_file_is_json(storage):
    storage.save_config({"game_data_dir": "/games/bg3/Data"})
    with open(storage.config_file) as f:
        assert json.load(f)["game_data_dir"] == "/games/bg3/Data"


@pytest.mark.parametrize("game, package, document", [
    (Game.DIVINITY_ORIGINAL_SIN, PackageVersion.V7, DocumentVersion.CHUNKED_COMPRESS),
    (Game.DIVINITY_ORIGINAL_SIN_2_DE, PackageVersion.V13, DocumentVersion.EXTENDED_NODES),
    (Game.BALDURS_GATE_3, PackageVersion.V18, DocumentVersion.BG3_ADDITIONAL_BLOB),
])
def test_game_versions(game, package, document):
    assert game.package_version == package
    assert game.document_version == document


def test_game_from_name():
    assert Game.from_name("baldurs_gate_3") is Game.BALDURS_GATE_3
    assert not Game.DIVINITY_ORIGINAL_SIN_EE.is_fw3
    assert Game.DIVINITY_ORIGINAL_SIN_2.is_fw3
    with pytest.raises(ValueError):
        Game.from_name("Pillars")
