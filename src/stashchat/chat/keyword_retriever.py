import string
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from sqlalchemy import Select, or_, select
from sqlalchemy.exc import SQLAlchemyError

from stashchat.chat.config import FallbackConfig
from stashchat.chat.types import ContentChunk, RetrievalPath
from stashchat.store.models import Item
from stashchat.util.db import get_session

_logger = structlog.get_logger()


@dataclass(frozen=True)
class FallbackResult:
    chunks: list[ContentChunk]
    path: RetrievalPath


def extract_keywords(question: str, min_length: int = 4) -> list[str]:
    """Lower-cased whitespace tokens of at least *min_length* characters.

    Surrounding punctuation is stripped first ("appointment?" -> "appointment");
    duplicates are dropped keeping first-seen order.
    """
    seen: dict[str, None] = {}
    for raw in question.lower().split():
        token = raw.strip(string.punctuation)
        if len(token) >= min_length:
            seen.setdefault(token, None)
    return list(seen)


def _item_text(item: Item) -> str:
    return f"{item.title or ''} {item.description or ''} {item.content or ''}".strip()


class KeywordFallbackRetriever:
    """Text-matching retrieval used when the vector path has nothing to offer."""

    def __init__(self, fallback_config: FallbackConfig) -> None:
        self._config = fallback_config

    def retrieve(self, question: str, user_id: str) -> FallbackResult:
        try:
            owner = uuid.UUID(str(user_id))
        except ValueError:
            _logger.warning("fallback_invalid_user_id", user_id=user_id)
            return FallbackResult(chunks=[], path=RetrievalPath.NONE)

        keywords = extract_keywords(question, self._config.min_token_length)
        if keywords:
            matched = self.match_keywords(keywords, owner)
            if matched:
                return FallbackResult(chunks=matched, path=RetrievalPath.KEYWORD)
        else:
            _logger.info("fallback_no_keywords", question_preview=question[:80])

        recent = self.recent_items(owner)
        if recent:
            return FallbackResult(chunks=recent, path=RetrievalPath.RECENT)
        return FallbackResult(chunks=[], path=RetrievalPath.NONE)

    def match_keywords(self, keywords: Sequence[str], owner: uuid.UUID) -> list[ContentChunk]:
        conditions = [
            column.icontains(keyword, autoescape=True)
            for keyword in keywords
            for column in (Item.title, Item.content, Item.description)
        ]
        stmt = (
            select(Item)
            .where(Item.user_id == owner, or_(*conditions))
            .order_by(Item.created_at.desc(), Item.id)
            .limit(self._config.keyword_limit)
        )

        items = self._fetch(stmt, "keyword_search_failed", owner)
        chunks: list[ContentChunk] = []
        for item in items:
            body = _item_text(item)
            lowered = body.lower()
            coverage = sum(1 for keyword in keywords if keyword in lowered) / len(keywords)
            chunks.append(_to_chunk(item, body, coverage))
        # stable sort keeps newest-first among equal coverage
        chunks.sort(key=lambda chunk: chunk.similarity, reverse=True)

        _logger.info(
            "keyword_search_completed",
            user_id=str(owner),
            keywords=list(keywords),
            matched=len(chunks),
        )
        return chunks

    def recent_items(self, owner: uuid.UUID) -> list[ContentChunk]:
        stmt = (
            select(Item)
            .where(Item.user_id == owner)
            .order_by(Item.created_at.desc(), Item.id)
            .limit(self._config.recent_limit)
        )

        items = self._fetch(stmt, "recent_items_failed", owner)
        chunks = [
            _to_chunk(item, body, self._config.recent_similarity)
            for item in items
            if (body := _item_text(item))
        ]

        _logger.info("recent_items_loaded", user_id=str(owner), count=len(chunks))
        return chunks

    @staticmethod
    def _fetch(stmt: Select[tuple[Item]], failure_event: str, owner: uuid.UUID) -> list[Item]:
        try:
            with get_session() as session:
                return list(session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            _logger.warning(failure_event, user_id=str(owner), error=str(exc))
            return []


def _to_chunk(item: Item, body: str, similarity: float) -> ContentChunk:
    return ContentChunk(
        content=body,
        similarity=similarity,
        item_id=str(item.id),
        item_title=item.title or "Untitled",
        item_type=item.type,
        item_url=item.url or None,
    )
