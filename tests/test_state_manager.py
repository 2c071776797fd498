import json

import pytest

from conftest import NAMESPACE
from deferagent.config import DeferralRecord, StateManager


def test_empty_record(state_manager):
    record = state_manager.load_record()
    assert record == DeferralRecord()
    assert not record.cycle_active


def test_start_cycle_persists_deadline_and_update_list(state_manager, tmp_path):
    assert state_manager.start_cycle(1_750_259_200, "macOS Ventura 13.4.1 and Safari")

    record = state_manager.load_record()
    assert record.cycle_active
    assert record.enforce_after == 1_750_259_200
    assert record.update_list == "macOS Ventura 13.4.1 and Safari"
    stored = json.loads((tmp_path / f"{NAMESPACE}.json").read_text(encoding="utf-8"))
    assert stored == {
        "UpdateList": "macOS Ventura 13.4.1 and Safari",
        "UpdatesForcedAfter": 1_750_259_200,
    }


def test_start_cycle_without_update_list_drops_stale_list(state_manager):
    state_manager.start_cycle(1000, "Safari")
    state_manager.start_cycle(500, None)

    record = state_manager.load_record()
    assert record.enforce_after == 500
    assert record.update_list is None


def test_deferral_is_clamped_to_deadline(state_manager):
    state_manager.start_cycle(1000, None)

    state_manager.save_deferred_until(5000)
    assert state_manager.load_record().deferred_until == 1000

    state_manager.save_deferred_until(900)
    assert state_manager.load_record().deferred_until == 900


def test_clear_deferred_until_keeps_deadline(state_manager):
    state_manager.start_cycle(1000, "Safari")
    state_manager.save_deferred_until(900)

    state_manager.clear_deferred_until()

    record = state_manager.load_record()
    assert record.deferred_until is None
    assert record.enforce_after == 1000


def test_clear_is_idempotent(state_manager, tmp_path):
    state_manager.start_cycle(1000, "Safari")

    assert state_manager.clear()
    assert not (tmp_path / f"{NAMESPACE}.json").exists()
    assert state_manager.clear()
    assert state_manager.load_record() == DeferralRecord()


def test_invalid_stored_values_read_as_absent(state_manager, tmp_path):
    (tmp_path / f"{NAMESPACE}.json").write_text(json.dumps({
        "UpdatesForcedAfter": "tomorrow",
        "UpdatesDeferredUntil": True,
        "UpdateList": 42,
    }), encoding="utf-8")

    assert state_manager.load_record() == DeferralRecord()


def test_corrupt_state_file_reads_as_empty(state_manager, tmp_path):
    (tmp_path / f"{NAMESPACE}.json").write_text("{", encoding="utf-8")

    assert state_manager.load_record() == DeferralRecord()
    assert state_manager.start_cycle(1000, None)
    assert state_manager.load_record().enforce_after == 1000


def test_string_timestamps_are_accepted(state_manager, tmp_path):
    (tmp_path / f"{NAMESPACE}.json").write_text(json.dumps({"UpdatesForcedAfter": "1000"}), encoding="utf-8")
    assert state_manager.load_record().enforce_after == 1000


@pytest.mark.parametrize("storage_path, namespace", [("", NAMESPACE), ("/tmp", "")])
def test_requires_path_and_namespace(storage_path, namespace):
    with pytest.raises(ValueError):
        StateManager(storage_path, namespace)
