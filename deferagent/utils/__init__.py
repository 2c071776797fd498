"""
Utility functions for the deferral agent.
"""
from deferagent.utils.logger import get_logger, setup_logger
from deferagent.utils.utils import CommandResult, run_command, save_json, load_json, move_if_present

__all__ = [
    'get_logger',
    'setup_logger',
    'CommandResult',
    'run_command',
    'save_json',
    'load_json',
    'move_if_present'
]
