"""
Defines the states of an enforcement cycle.
"""
from enum import Enum, auto
from typing import Optional


class CycleState(Enum):
    """
    Enumeration of enforcement cycle states.

    The state is never persisted. Each invocation derives it from the current
    time, the stored deadline and the stored deferral, which is what keeps the
    agent correct although it runs as a series of short-lived processes.

    States:
        NO_UPDATES_PENDING: No mandatory update is pending; the agent removes itself
        WITHIN_SUPPRESSED_WINDOW: A previous deferral is still in effect; nothing to do
        AWAITING_DECISION: Deferral time remains and the user must be prompted
        DEADLINE_REACHED: No deferral time remains; updates are enforced
    """
    NO_UPDATES_PENDING = auto()
    WITHIN_SUPPRESSED_WINDOW = auto()
    AWAITING_DECISION = auto()
    DEADLINE_REACHED = auto()


def is_deferral_active(now: int, enforce_after: int, deferred_until: Optional[int]) -> bool:
    """True while a stored deferral is in the future and still ahead of the deadline."""
    return deferred_until is not None and now < deferred_until < enforce_after


def derive_cycle_state(now: int, enforce_after: int, deferred_until: Optional[int]) -> CycleState:
    """
    Derives the state of an active cycle (updates are known to be pending).

    :param now: Current epoch seconds
    :type now: int
    :param enforce_after: Deadline epoch seconds
    :type enforce_after: int
    :param deferred_until: Stored suppress-until epoch seconds, if any
    :type deferred_until: Optional[int]
    :return: The state this invocation should handle
    :rtype: CycleState
    """
    if is_deferral_active(now, enforce_after, deferred_until):
        return CycleState.WITHIN_SUPPRESSED_WINDOW
    if enforce_after - now > 0:
        return CycleState.AWAITING_DECISION
    return CycleState.DEADLINE_REACHED
