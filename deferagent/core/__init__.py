"""
Core deferral logic: cycle states, messaging, the controller and enforcement.
"""
from .cycle_state import CycleState, derive_cycle_state, is_deferral_active
from .messaging import Message, MessageRenderer, format_update_list
from .enforcement import EnforcementExecutor
from .controller import DeferralController

__all__ = [
    'CycleState',
    'derive_cycle_state',
    'is_deferral_active',
    'Message',
    'MessageRenderer',
    'format_update_list',
    'EnforcementExecutor',
    'DeferralController'
]
