from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class EmbeddingProviderType(StrEnum):
    OPENAI = "openai"
    BEDROCK = "bedrock"


@dataclass
class AbstractEmbeddingConfig(ABC):
    model: str
    dimensions: int = 1536
    timeout_seconds: float = 10.0

    @classmethod
    @abstractmethod
    def from_yaml(
        cls,
        raw: dict[str, Any],
        model: str,
        dimensions: int,
        timeout_seconds: float,
    ) -> "AbstractEmbeddingConfig": ...


@dataclass
class OpenAIEmbeddingConfig(AbstractEmbeddingConfig):
    api_key: str = ""
    api_url: str | None = None

    @classmethod
    def from_yaml(
        cls,
        raw: dict[str, Any],
        model: str,
        dimensions: int,
        timeout_seconds: float,
    ) -> "OpenAIEmbeddingConfig":
        api_key = raw.get("api_key", "")
        if not api_key:
            raise ValueError("Missing 'embedding.openai.api_key' in chat config")

        return cls(
            model=model,
            dimensions=dimensions,
            timeout_seconds=timeout_seconds,
            api_key=api_key,
            api_url=raw.get("api_url") or None,
        )


@dataclass
class BedrockEmbeddingConfig(AbstractEmbeddingConfig):
    region: str = ""

    @classmethod
    def from_yaml(
        cls,
        raw: dict[str, Any],
        model: str,
        dimensions: int,
        timeout_seconds: float,
    ) -> "BedrockEmbeddingConfig":
        region = raw.get("region", "")
        if not region:
            raise ValueError("Missing 'embedding.bedrock.region' in chat config")

        return cls(
            model=model,
            dimensions=dimensions,
            timeout_seconds=timeout_seconds,
            region=region,
        )
