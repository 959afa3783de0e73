import json
from typing import Any

import boto3  # type: ignore[import-untyped]
import structlog
from botocore.config import Config  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[import-untyped]

from stashchat.embedding.config import BedrockEmbeddingConfig
from stashchat.embedding.provider import AbstractEmbeddingProvider
from stashchat.errors import EmbeddingUnavailable

_logger = structlog.get_logger()


class BedrockEmbeddingProvider(AbstractEmbeddingProvider):
    """Titan text embeddings. Titan accepts one input per request."""

    config: BedrockEmbeddingConfig

    def __init__(self, config: BedrockEmbeddingConfig) -> None:
        super().__init__(config)
        self._client = boto3.client(
            "bedrock-runtime",
            region_name=config.region,
            config=Config(
                connect_timeout=config.timeout_seconds,
                read_timeout=config.timeout_seconds,
                retries={"max_attempts": 0},
            ),
        )

    def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_one(text) for text in texts]

    def _embed_one(self, text: str) -> list[float]:
        request_body: dict[str, Any] = {
            "inputText": text,
            "dimensions": self.config.dimensions,
        }
        try:
            response = self._client.invoke_model(
                modelId=self.config.model,
                body=json.dumps(request_body),
            )
            response_body = json.loads(response["body"].read())
        except (BotoCoreError, ClientError) as exc:
            _logger.warning("bedrock_embedding_failed", error=str(exc))
            raise EmbeddingUnavailable(f"Bedrock embedding request failed: {exc}") from exc
        except (KeyError, ValueError) as exc:
            raise EmbeddingUnavailable(f"Malformed Bedrock embedding response: {exc}") from exc

        return _parse_vector(response_body)


def _parse_vector(response_body: Any) -> list[float]:
    embedding = response_body.get("embedding") if isinstance(response_body, dict) else None
    if not isinstance(embedding, list):
        raise EmbeddingUnavailable("Bedrock embedding response has no 'embedding' list")
    try:
        return [float(value) for value in embedding]
    except (TypeError, ValueError) as exc:
        raise EmbeddingUnavailable(f"Non-numeric value in Bedrock embedding: {exc}") from exc
