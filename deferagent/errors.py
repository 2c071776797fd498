"""
Exceptions raised by the deferral agent.

Every fatal condition for an invocation derives from DeferAgentError; the CLI
logs it and exits with status 1 without touching persisted state.
"""
from typing import List, Optional


class DeferAgentError(Exception):
    """Base class for errors that end an invocation with exit code 1."""


class ConfigurationError(DeferAgentError, ValueError):
    """The managed configuration could not be read or is inconsistent."""


class PreflightError(DeferAgentError):
    """
    One or more environment checks failed before the main process started.

    :param failures: Human-readable description of every failed check
    :type failures: List[str]
    :param retry_interval: Seconds until the scheduler runs the agent again, if known
    :type retry_interval: Optional[int]
    """

    def __init__(self, failures: List[str], retry_interval: Optional[int] = None):
        self.failures = list(failures)
        self.retry_interval = retry_interval
        super().__init__("; ".join(self.failures) or "Preflight checks failed.")


class PromptGatewayError(DeferAgentError):
    """The install/defer prompt produced no usable answer."""

    def __init__(self, message: str, return_code: Optional[int] = None):
        self.return_code = return_code
        super().__init__(message)
