from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from stashchat.llm.types import ProviderType


@dataclass
class AbstractProviderConfig(ABC):
    """Connection settings for a chat-completion backend.

    Model parameters are not part of the provider config; they travel with
    each call as :class:`~stashchat.llm.types.CompletionSettings`.
    """

    @classmethod
    @abstractmethod
    def from_yaml(cls, raw: dict[str, Any]) -> "AbstractProviderConfig": ...


@dataclass
class OpenAIConfig(AbstractProviderConfig):
    api_key: str
    api_url: str | None = None

    @classmethod
    def from_yaml(cls, raw: dict[str, Any]) -> "OpenAIConfig":
        api_key = raw.get("api_key", "")
        if not api_key:
            raise ValueError("Missing 'llm.openai.api_key' in chat config")

        return cls(api_key=api_key, api_url=raw.get("api_url") or None)


@dataclass
class BedrockConfig(AbstractProviderConfig):
    region: str
    anthropic_version: str = "bedrock-2023-05-31"
    api_url: str | None = None

    @classmethod
    def from_yaml(cls, raw: dict[str, Any]) -> "BedrockConfig":
        region = raw.get("region", "")
        if not region:
            raise ValueError("Missing 'llm.bedrock.region' in chat config")

        return cls(
            region=region,
            anthropic_version=raw.get("anthropic_version") or "bedrock-2023-05-31",
            api_url=raw.get("api_url") or None,
        )


def parse_provider_config(raw: dict[str, Any]) -> AbstractProviderConfig:
    provider_key = raw.get("provider", "openai")
    try:
        provider_type = ProviderType(provider_key)
    except ValueError as exc:
        raise ValueError(f"Unknown llm provider: {provider_key}") from exc

    provider_raw = raw.get(provider_key, {})

    match provider_type:
        case ProviderType.OPENAI:
            return OpenAIConfig.from_yaml(provider_raw)
        case ProviderType.BEDROCK:
            return BedrockConfig.from_yaml(provider_raw)
