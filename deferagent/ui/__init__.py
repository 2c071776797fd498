"""
User-facing windows for the deferral agent.
"""
from .prompt_gateway import (
    JamfHelperGateway,
    PromptOutcome,
    PromptRequest,
    PromptResponse,
    classify_return_code
)

__all__ = [
    'JamfHelperGateway',
    'PromptOutcome',
    'PromptRequest',
    'PromptResponse',
    'classify_return_code'
]
