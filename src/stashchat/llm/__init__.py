from stashchat.llm.adapters import BedrockProvider, OpenAIProvider
from stashchat.llm.config import (
    AbstractProviderConfig,
    BedrockConfig,
    OpenAIConfig,
    parse_provider_config,
)
from stashchat.llm.provider import AbstractChatProvider
from stashchat.llm.types import (
    CompletionSettings,
    Message,
    MessageRole,
    ProviderError,
    ProviderType,
    TextResponse,
    TokenUsage,
)


def create_chat_provider(config: AbstractProviderConfig) -> AbstractChatProvider:
    match config:
        case OpenAIConfig():
            return OpenAIProvider(config)
        case BedrockConfig():
            return BedrockProvider(config)
        case _:
            raise ValueError(f"Unknown llm config: {type(config).__name__}")


__all__ = [
    "AbstractChatProvider",
    "AbstractProviderConfig",
    "BedrockConfig",
    "BedrockProvider",
    "CompletionSettings",
    "Message",
    "MessageRole",
    "OpenAIConfig",
    "OpenAIProvider",
    "ProviderError",
    "ProviderType",
    "TextResponse",
    "TokenUsage",
    "create_chat_provider",
    "parse_provider_config",
]
