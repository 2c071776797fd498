import time

from deferagent.config import StateManager
from deferagent.config.config_manager import BUNDLE_ID
from deferagent.main import main


def test_status_without_cycle(tmp_path, capsys):
    assert main(["--state-dir", str(tmp_path), "status"]) == 0

    out = capsys.readouterr().out
    assert "No enforcement cycle is active." in out
    assert "No invocation in progress." in out


def test_status_reports_stored_record(tmp_path, capsys):
    state = StateManager(str(tmp_path), BUNDLE_ID)
    now = int(time.time())
    state.start_cycle(now + 86400, "Safari 16.5.1")
    state.save_deferred_until(now + 3600)

    assert main(["--state-dir", str(tmp_path), "status"]) == 0

    out = capsys.readouterr().out
    assert "Updates: Safari 16.5.1" in out
    assert "State: WITHIN_SUPPRESSED_WINDOW" in out


def test_reset_clears_record(tmp_path, capsys):
    state = StateManager(str(tmp_path), BUNDLE_ID)
    state.start_cycle(int(time.time()) + 86400, "Safari")

    assert main(["--state-dir", str(tmp_path), "reset"]) == 0

    assert not state.load_record().cycle_active
    assert "Deferral record cleared." in capsys.readouterr().out


def test_invalid_configuration_exits_with_failure(tmp_path):
    config = tmp_path / "prefs.json"
    config.write_text("{", encoding="utf-8")

    assert main(["--config", str(config), "--state-dir", str(tmp_path), "run"]) == 1
