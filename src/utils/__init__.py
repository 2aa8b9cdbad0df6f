"""
Utility modules for the account orchestrator.
"""

from .llm import (
    LLMError,
    RateLimitError,
    ValidationError,
    APIError,
    ChatMessage,
    LLMRequest,
    LLMResponse,
    LLMProvider,
    OpenAICompatibleProvider,
    LLMClient,
    create_llm_client,
    extract_json,
    parse_json
)

__all__ = [
    'LLMError',
    'RateLimitError',
    'ValidationError',
    'APIError',
    'ChatMessage',
    'LLMRequest',
    'LLMResponse',
    'LLMProvider',
    'OpenAICompatibleProvider',
    'LLMClient',
    'create_llm_client',
    'extract_json',
    'parse_json',
]
