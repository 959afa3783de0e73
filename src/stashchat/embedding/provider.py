from abc import ABC, abstractmethod

from stashchat.embedding.config import AbstractEmbeddingConfig
from stashchat.errors import EmbeddingUnavailable


class AbstractEmbeddingProvider(ABC):
    def __init__(self, config: AbstractEmbeddingConfig) -> None:
        self.config = config

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, raising :class:`EmbeddingUnavailable` on any failure."""
        ...

    def embed_query(self, text: str) -> list[float]:
        if not text.strip():
            raise EmbeddingUnavailable("Cannot embed an empty query")

        vectors = self.embed([text])
        if not vectors or not vectors[0]:
            raise EmbeddingUnavailable("Embedding response contained no vector")

        vector = vectors[0]
        if len(vector) != self.config.dimensions:
            raise EmbeddingUnavailable(
                f"Expected {self.config.dimensions} dimensions, got {len(vector)}"
            )
        return vector
