import structlog
from openai import OpenAI, OpenAIError

from stashchat.embedding.config import OpenAIEmbeddingConfig
from stashchat.embedding.provider import AbstractEmbeddingProvider
from stashchat.errors import EmbeddingUnavailable

_logger = structlog.get_logger()


class OpenAIEmbeddingProvider(AbstractEmbeddingProvider):
    config: OpenAIEmbeddingConfig

    def __init__(self, config: OpenAIEmbeddingConfig) -> None:
        super().__init__(config)
        self._client = OpenAI(
            api_key=config.api_key,
            base_url=config.api_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        _logger.debug("openai_embedding_request", model=self.config.model, count=len(texts))
        try:
            response = self._client.embeddings.create(
                model=self.config.model,
                input=texts,
            )
        except OpenAIError as exc:
            _logger.warning("openai_embedding_failed", error=str(exc))
            raise EmbeddingUnavailable(f"OpenAI embedding request failed: {exc}") from exc

        if len(response.data) != len(texts):
            raise EmbeddingUnavailable(
                f"OpenAI returned {len(response.data)} embeddings for {len(texts)} inputs"
            )

        try:
            ordered = sorted(response.data, key=lambda item: item.index)
            return [[float(value) for value in item.embedding] for item in ordered]
        except (TypeError, ValueError) as exc:
            raise EmbeddingUnavailable(f"Malformed OpenAI embedding response: {exc}") from exc
