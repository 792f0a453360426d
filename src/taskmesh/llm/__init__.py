"""LLM provider interfaces."""

from .provider import (
    CallbackProvider,
    ChatCompletionProvider,
    LLMError,
    LLMProvider,
    PromptContext,
    StaticResponseProvider,
)

__all__ = [
    "LLMProvider",
    "LLMError",
    "PromptContext",
    "ChatCompletionProvider",
    "StaticResponseProvider",
    "CallbackProvider",
]
