from conftest import (
    NO_UPDATES,
    RECOMMENDED_UPDATES,
    RESTART_UPDATES,
    DummyProbe,
)
from deferagent.config import AgentSettings
from deferagent.core import MessageRenderer


def _messages(inventory) -> MessageRenderer:
    return MessageRenderer("Safari", inventory.restart_required, "IT")


def test_teardown_order(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES))
    harness.state.start_cycle(5000, "Safari")

    harness.executor.teardown()

    assert harness.events == ["recon", "remove_files", "unload_helper", "unload_main"]
    assert harness.gateway.kills == 1
    assert not harness.state.load_record().cycle_active


def test_teardown_is_repeatable(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES))

    harness.executor.teardown(refresh_inventory=False, unload_main_job=False)
    harness.executor.teardown(refresh_inventory=False, unload_main_job=False)

    assert harness.events == ["remove_files", "unload_helper"] * 2


def test_restart_escalation_waits_before_forcing(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES), settings=AgentSettings(hard_restart_delay=45))

    harness.executor.restart_escalation()

    assert harness.events == ["power:restart", "force_quit", "power:restart"]
    assert harness.sleeps == [45]


def test_restart_install_with_updates_left_keeps_state(make_harness):
    harness = make_harness(DummyProbe(RESTART_UPDATES))
    harness.state.start_cycle(5000, "Safari")

    harness.executor.install_scripted(RESTART_UPDATES, _messages(RESTART_UPDATES))

    assert harness.probe.installs == [("all", True)]
    assert harness.state.load_record().enforce_after == 5000
    assert harness.events == ["power:restart", "force_quit", "power:restart"]


def test_recommended_install_tears_down_when_done(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES))
    harness.state.start_cycle(5000, "Safari")

    harness.executor.install_scripted(RECOMMENDED_UPDATES, _messages(RECOMMENDED_UPDATES))

    assert harness.probe.installs == [("recommended", False)]
    assert harness.events == ["recon", "remove_files", "unload_helper", "unload_main"]
    assert not harness.state.load_record().cycle_active


def test_manual_install_opens_software_update_once_with_alert_disabled(make_harness):
    settings = AgentSettings(manual_updates=True, disable_post_install_alert=True)
    harness = make_harness(DummyProbe(RESTART_UPDATES), settings=settings)

    harness.executor.apply_updates(RESTART_UPDATES, _messages(RESTART_UPDATES), remaining=3600)

    assert harness.events == ["open_software_update"]
    assert harness.sleeps == []
    assert harness.gateway.huds == []


def test_manual_install_with_nothing_pending_shows_nothing(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES), settings=AgentSettings(manual_updates=True))

    harness.executor.prompt_manual_install(_messages(NO_UPDATES), remaining=3600)

    assert harness.events == []
    assert harness.gateway.huds == []
    assert harness.gateway.kills == 1


def test_enforce_deadline_shows_countdown_then_installs(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES), settings=AgentSettings(update_delay=120))

    harness.executor.enforce_deadline(RECOMMENDED_UPDATES, _messages(RECOMMENDED_UPDATES))

    assert harness.gateway.countdowns[0][2] == 120
    assert harness.probe.installs == [("recommended", False)]


def test_completed_restart_install_removes_job_definition_but_not_running_job(make_harness):
    harness = make_harness(DummyProbe(NO_UPDATES))
    harness.state.start_cycle(5000, "macOS Ventura 13.4.1")

    harness.executor.install_scripted(RESTART_UPDATES, _messages(RESTART_UPDATES))

    assert "remove_files" in harness.events
    assert "recon" not in harness.events
    assert "unload_main" not in harness.events
    assert harness.events[-3:] == ["power:restart", "force_quit", "power:restart"]
    assert not harness.state.load_record().cycle_active
