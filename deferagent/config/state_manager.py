"""
State Manager module for the persisted deferral record.

The record outlives each short-lived invocation of the agent. It is stored as
a small JSON key-value file named after the agent's bundle identifier.
"""
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..utils import get_logger, save_json, load_json

logger = get_logger(__name__)

KEY_FORCED_AFTER = "UpdatesForcedAfter"
KEY_DEFERRED_UNTIL = "UpdatesDeferredUntil"
KEY_UPDATE_LIST = "UpdateList"


@dataclass(frozen=True)
class DeferralRecord:
    """
    Snapshot of the persisted deferral state.

    :ivar enforce_after: Deadline after which updates are enforced, epoch seconds
    :ivar deferred_until: Time until which prompting is suppressed, epoch seconds
    :ivar update_list: Description of the pending updates captured at cycle start
    """
    enforce_after: Optional[int] = None
    deferred_until: Optional[int] = None
    update_list: Optional[str] = None

    @property
    def cycle_active(self) -> bool:
        return self.enforce_after is not None


def _read_timestamp(state: Dict[str, Any], key: str) -> Optional[int]:
    value = state.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        logger.warning(f"Ignoring invalid value for '{key}' in state: {value!r}")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid value for '{key}' in state: {value!r}")
        return None


class StateManager:
    """
    Reads and writes the deferral record.

    Every accessor reads the file again so that a long-running invocation
    observes writes made by an overlapping one. Each mutation is a single
    read-modify-write followed by an atomic replace of the file.
    """

    def __init__(self, storage_path: str, namespace: str):
        """
        Initialize the StateManager.

        :param storage_path: Directory holding the state file
        :type storage_path: str
        :param namespace: Name of the record, normally the bundle identifier
        :type namespace: str
        :raises ValueError: if the storage path or namespace is empty
        """
        if not storage_path:
            raise ValueError("A storage path is required for StateManager.")
        if not namespace:
            raise ValueError("A namespace is required for StateManager.")
        self.storage_path = storage_path
        self.state_filepath = os.path.join(storage_path, f"{namespace}.json")
        logger.debug(f"StateManager initialized. State file: {self.state_filepath}")

    def _load_state_from_file(self) -> Dict[str, Any]:
        state = load_json(self.state_filepath)
        if not isinstance(state, dict):
            logger.warning(f"State file {self.state_filepath} does not hold a dictionary. Ignoring its content.")
            return {}
        return state

    def _update_state(self, **changes: Any) -> bool:
        """
        Applies key changes to the stored state; a value of None deletes the key.

        :return: True if the state was saved, False otherwise
        :rtype: bool
        """
        state = self._load_state_from_file()
        for key, value in changes.items():
            if value is None:
                state.pop(key, None)
            else:
                state[key] = value
        if save_json(state, self.state_filepath):
            logger.debug(f"Updated state keys {sorted(changes)} and saved successfully.")
            return True
        logger.error(f"Failed to save state after updating keys {sorted(changes)}.")
        return False

    def load_record(self) -> DeferralRecord:
        """
        Reads the current deferral record.

        :return: Record with any missing or invalid field set to None
        :rtype: DeferralRecord
        """
        state = self._load_state_from_file()
        update_list = state.get(KEY_UPDATE_LIST)
        return DeferralRecord(
            enforce_after=_read_timestamp(state, KEY_FORCED_AFTER),
            deferred_until=_read_timestamp(state, KEY_DEFERRED_UNTIL),
            update_list=update_list if isinstance(update_list, str) and update_list else None
        )

    def start_cycle(self, enforce_after: int, update_list: Optional[str]) -> bool:
        """Records a new or pulled-in deadline together with the update list it applies to."""
        return self._update_state(**{
            KEY_FORCED_AFTER: int(enforce_after),
            KEY_UPDATE_LIST: update_list,
        })

    def save_enforce_after(self, enforce_after: int) -> bool:
        return self._update_state(**{KEY_FORCED_AFTER: int(enforce_after)})

    def save_deferred_until(self, deferred_until: int) -> bool:
        """
        Stores the next-prompt time, clamped to the stored deadline.

        :param deferred_until: Requested suppress-until time, epoch seconds
        :type deferred_until: int
        :return: True if saved, False otherwise
        :rtype: bool
        """
        enforce_after = self.load_record().enforce_after
        if enforce_after is not None and deferred_until > enforce_after:
            logger.debug(f"Clamping deferral {deferred_until} to deadline {enforce_after}.")
            deferred_until = enforce_after
        return self._update_state(**{KEY_DEFERRED_UNTIL: int(deferred_until)})

    def clear_deferred_until(self) -> bool:
        return self._update_state(**{KEY_DEFERRED_UNTIL: None})

    def clear(self) -> bool:
        """
        Removes the whole record. Succeeds when the record is already absent.

        :return: True if no record remains, False otherwise
        :rtype: bool
        """
        try:
            os.remove(self.state_filepath)
            logger.info(f"Removed deferral state: {self.state_filepath}")
        except FileNotFoundError:
            logger.debug("No deferral state to remove.")
        except OSError as e:
            logger.error(f"Failed to remove deferral state {self.state_filepath}: {e}")
            return False
        return True
