from stashchat.embedding.adapters import BedrockEmbeddingProvider, OpenAIEmbeddingProvider
from stashchat.embedding.config import (
    AbstractEmbeddingConfig,
    BedrockEmbeddingConfig,
    EmbeddingProviderType,
    OpenAIEmbeddingConfig,
)
from stashchat.embedding.provider import AbstractEmbeddingProvider


def create_embedding_provider(config: AbstractEmbeddingConfig) -> AbstractEmbeddingProvider:
    match config:
        case OpenAIEmbeddingConfig():
            return OpenAIEmbeddingProvider(config)
        case BedrockEmbeddingConfig():
            return BedrockEmbeddingProvider(config)
        case _:
            raise ValueError(f"Unknown embedding config: {type(config).__name__}")


__all__ = [
    "AbstractEmbeddingConfig",
    "AbstractEmbeddingProvider",
    "BedrockEmbeddingConfig",
    "BedrockEmbeddingProvider",
    "EmbeddingProviderType",
    "OpenAIEmbeddingConfig",
    "OpenAIEmbeddingProvider",
    "create_embedding_provider",
]
