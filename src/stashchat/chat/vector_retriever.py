from typing import Any

import structlog
from pgvector.sqlalchemy import Vector
from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from stashchat.chat.config import RetrievalConfig
from stashchat.chat.types import ContentChunk
from stashchat.errors import RetrievalEmpty
from stashchat.util.db import get_session

_logger = structlog.get_logger()

# Similarity function maintained alongside the embeddings table by the ingestion side.
_SEARCH_SQL = """
SELECT content_chunk, similarity, item_id, item_title, item_type, item_url
FROM search_similar_content(
    query_embedding => :query_embedding,
    match_threshold => :match_threshold,
    match_count => :match_count,
    target_user_id => :target_user_id
)
"""


class VectorRetriever:
    def __init__(self, retrieval_config: RetrievalConfig, dimensions: int = 1536) -> None:
        self._retrieval_config = retrieval_config
        self._statement = text(_SEARCH_SQL).bindparams(
            bindparam("query_embedding", type_=Vector(dimensions)),
        )

    def search(
        self,
        query_embedding: list[float],
        user_id: str,
        match_threshold: float | None = None,
        match_count: int | None = None,
        display_count: int | None = None,
    ) -> list[ContentChunk]:
        """Return the user's chunks at or above the threshold, best first.

        Fetches ``match_count`` rows and keeps the top ``display_count`` after
        sorting. Raises :class:`RetrievalEmpty` when nothing qualifies or the
        query fails, so callers can switch to keyword search.
        """
        threshold = (
            match_threshold
            if match_threshold is not None
            else self._retrieval_config.match_threshold
        )
        fetch = match_count or self._retrieval_config.match_count
        keep = display_count or self._retrieval_config.display_count

        params: dict[str, Any] = {
            "query_embedding": query_embedding,
            "match_threshold": threshold,
            "match_count": fetch,
            "target_user_id": user_id,
        }

        try:
            with get_session() as session:
                rows = session.execute(self._statement, params).fetchall()
        except SQLAlchemyError as exc:
            _logger.warning("vector_search_failed", user_id=user_id, error=str(exc))
            raise RetrievalEmpty(f"Vector search failed: {exc}") from exc

        chunks = [
            ContentChunk(
                content=row.content_chunk or "",
                similarity=float(row.similarity),
                item_id=str(row.item_id),
                item_title=row.item_title or "Untitled",
                item_type=str(row.item_type),
                item_url=row.item_url or None,
            )
            for row in rows
            if row.similarity is not None and float(row.similarity) >= threshold
        ]
        chunks.sort(key=lambda chunk: (-chunk.similarity, chunk.item_id))
        chunks = chunks[:keep]

        _logger.info(
            "vector_search_completed",
            user_id=user_id,
            threshold=threshold,
            candidates=len(rows),
            kept=len(chunks),
            top_similarity=round(chunks[0].similarity, 3) if chunks else None,
        )

        if not chunks:
            raise RetrievalEmpty(f"No chunks at or above similarity {threshold}")
        return chunks
