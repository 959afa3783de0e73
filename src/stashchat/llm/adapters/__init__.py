from stashchat.llm.adapters.bedrock import BedrockProvider
from stashchat.llm.adapters.openai import OpenAIProvider

__all__ = ["BedrockProvider", "OpenAIProvider"]
