from pathlib import Path

import pytest
import yaml

from dwim.core.config.settings import Settings


def test_defaults_follow_home(tmp_path):
    s = Settings()
    home = tmp_path / "home"
    assert s.home == home
    assert s.state_dir == home / "state"
    assert s.ledger_path == home / "state" / "ledger.jsonl"
    assert s.user_commands == home / "commands"
    assert s.clarification_dir == home / "state" / "clarifications"
    assert s.shared_commands is None
    assert s.promote_min_frequency == 10
    assert s.promote_min_stability == pytest.approx(0.9)


def test_env_beats_file_and_kwargs_beat_env(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    (home / "config.yaml").write_text(yaml.safe_dump({"interpretation_timeout": 5, "model": "from-file"}))

    assert Settings().interpretation_timeout == 5.0
    assert Settings().model == "from-file"

    monkeypatch.setenv("DWIM_TIMEOUT", "7")
    assert Settings().interpretation_timeout == 7.0
    assert Settings(interpretation_timeout=9).interpretation_timeout == 9.0


def test_ledger_follows_state_dir_unless_pinned(tmp_path, monkeypatch):
    monkeypatch.setenv("DWIM_STATE_DIR", str(tmp_path / "st"))
    assert Settings().ledger_path == tmp_path / "st" / "ledger.jsonl"

    monkeypatch.setenv("DWIM_LEDGER", str(tmp_path / "elsewhere.jsonl"))
    assert Settings().ledger_path == tmp_path / "elsewhere.jsonl"


def test_broken_config_file_is_ignored(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    (home / "config.yaml").write_text("- just\n- a list\n")
    assert Settings().interpretation_timeout == 30.0


def test_unknown_override_rejected():
    with pytest.raises(TypeError):
        Settings(colour="blue")


def test_as_dict_is_plain(tmp_path):
    data = Settings(shared_commands=tmp_path / "shared").as_dict()
    assert data["shared_commands"] == str(tmp_path / "shared")
    assert all(not isinstance(v, Path) for v in data.values())
