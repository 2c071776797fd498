"""
Platform integration for the deferral agent: update tooling, user session,
installed resources, preflight checks and the invocation lease.
"""
from .software_update import SoftwareUpdateProbe, UpdateInventory
from .session import UserSession, ConsoleUser, get_console_user
from .resources import AgentResources
from .preflight import PreflightChecker
from .lock_manager import InvocationLease, lease_ttl

__all__ = [
    'SoftwareUpdateProbe',
    'UpdateInventory',
    'UserSession',
    'ConsoleUser',
    'get_console_user',
    'AgentResources',
    'PreflightChecker',
    'InvocationLease',
    'lease_ttl'
]
