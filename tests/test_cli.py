import orjson
import pytest
from typer.testing import CliRunner

from feudengine.core.schemas import GamePhase
from feudengine.services.cli import app

runner = CliRunner()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("FEUD_STORAGE_DIR", raising=False)
    path = tmp_path / "feud.local.json"
    path.write_bytes(orjson.dumps({"storage_dir": str(tmp_path / "store")}))
    return path


def test_check_reports_match():
    result = runner.invoke(app, ["check", "Television", "TV"])
    assert result.exit_code == 0
    assert "normalized: 'television' vs 'tv'" in result.output
    assert "match: yes" in result.output


def test_check_reports_miss():
    result = runner.invoke(app, ["check", "Read", "Exercise"])
    assert result.exit_code == 0
    assert "match: no" in result.output


def test_packs_list_shows_builtin(config_path):
    result = runner.invoke(app, ["packs", "list", "--config", str(config_path)])
    assert result.exit_code == 0
    assert "* builtin\tDefault Pack" in result.output


def test_packs_export_import_round_trip(config_path, tmp_path):
    exported = tmp_path / "builtin.json"
    result = runner.invoke(app, ["packs", "export", "builtin", "--output", str(exported), "--config", str(config_path)])
    assert result.exit_code == 0
    assert exported.exists()

    result = runner.invoke(app, ["packs", "import", str(exported), "--config", str(config_path)])
    assert result.exit_code == 0
    assert "Imported Default Pack" in result.output

    listing = runner.invoke(app, ["packs", "list", "--config", str(config_path)])
    assert listing.output.count("Default Pack") == 2
    assert "imported" in listing.output


def test_packs_share_token_import(config_path):
    token = runner.invoke(app, ["packs", "export", "builtin", "--token", "--config", str(config_path)]).output.strip().splitlines()[-1]
    assert len(token) > 255
    result = runner.invoke(app, ["packs", "import", token, "--config", str(config_path)])
    assert result.exit_code == 0
    assert "Imported Default Pack" in result.output


def test_packs_unknown_ids_fail(config_path):
    assert runner.invoke(app, ["packs", "export", "nope", "--config", str(config_path)]).exit_code == 1
    assert runner.invoke(app, ["packs", "import", "garbage", "--config", str(config_path)]).exit_code == 1
    assert runner.invoke(app, ["packs", "select", "nope", "--config", str(config_path)]).exit_code == 1


def test_play_quits_on_command(config_path):
    result = runner.invoke(
        app,
        ["play", "--team-a", "Owls", "--team-b", "Foxes", "--seed", "3", "--config", str(config_path)],
        input=":quit\n",
    )
    assert result.exit_code == 0
    assert "Owls" in result.output


def test_resume_between_rounds_keeps_turn(config_path):
    from feudengine.config.settings import load_engine_config
    from feudengine.core.persistence import JsonFileStore
    from feudengine.engine import FeudEngine

    def open_engine():
        engine_config = load_engine_config(config_path)
        return FeudEngine(config=engine_config, storage=JsonFileStore(engine_config.storage_dir))

    engine = open_engine()
    engine.start_game("Owls", "Foxes")
    engine.end_round_advance()
    assert engine.active_team_index == 1
    assert engine.current_question is None
    engine.close()

    result = runner.invoke(app, ["play", "--resume", "--config", str(config_path)], input=":quit\n")
    assert result.exit_code == 0

    resumed = open_engine()
    assert resumed.active_team_index == 1
    assert resumed.current_question is not None
    assert resumed.phase is GamePhase.PLAYING
    resumed.close()
