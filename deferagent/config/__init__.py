"""
Configuration and persisted state for the deferral agent.
"""
from .config_manager import AgentSettings, ConfigManager
from .state_manager import DeferralRecord, StateManager

__all__ = [
    'AgentSettings',
    'ConfigManager',
    'DeferralRecord',
    'StateManager'
]
