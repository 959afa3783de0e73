from collections.abc import Iterable, Mapping
from functools import reduce
from types import MappingProxyType

from stashchat.chat.types import CandidateSource, ContentChunk


def _fold(sources: dict[str, CandidateSource], chunk: ContentChunk) -> dict[str, CandidateSource]:
    existing = sources.get(chunk.item_id)
    # ties keep the first chunk seen
    if existing is not None and chunk.similarity <= existing.max_similarity:
        return sources

    return {
        **sources,
        chunk.item_id: CandidateSource(
            id=chunk.item_id,
            title=chunk.item_title or "Untitled",
            type=chunk.item_type,
            url=chunk.item_url,
            max_similarity=chunk.similarity,
            content=chunk.content,
        ),
    }


def aggregate_sources(chunks: Iterable[ContentChunk]) -> Mapping[str, CandidateSource]:
    """Collapse chunks into one read-only candidate per item id.

    Each candidate carries the highest similarity among its item's chunks and
    the content of that chunk as its snippet.
    """
    return MappingProxyType(reduce(_fold, chunks, {}))


def rank_by_similarity(
    candidates: Mapping[str, CandidateSource],
    limit: int | None = None,
) -> list[CandidateSource]:
    """Candidates ordered by descending similarity, ties broken by item id."""
    ranked = sorted(candidates.values(), key=lambda c: (-c.max_similarity, c.id))
    return ranked if limit is None else ranked[:limit]
