from stashchat.embedding.adapters.bedrock import BedrockEmbeddingProvider
from stashchat.embedding.adapters.openai import OpenAIEmbeddingProvider

__all__ = ["BedrockEmbeddingProvider", "OpenAIEmbeddingProvider"]
