from dataclasses import dataclass, field
from enum import StrEnum


class ChatState(StrEnum):
    EMBEDDING = "embedding"
    VECTOR_SEARCH = "vector_search"
    AGGREGATE = "aggregate"
    FILTER = "filter"
    KEYWORD_FALLBACK = "keyword_fallback"
    COMPOSE = "compose"
    GENERATE = "generate"
    DONE = "done"
    FAILED = "failed"


class RetrievalPath(StrEnum):
    """Where the grounding context of an answer came from."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    RECENT = "recent"
    NONE = "none"

    @property
    def low_confidence(self) -> bool:
        return self in (RetrievalPath.RECENT, RetrievalPath.NONE)


@dataclass(frozen=True)
class ContentChunk:
    content: str
    similarity: float
    item_id: str
    item_title: str
    item_type: str
    item_url: str | None = None


@dataclass(frozen=True)
class CandidateSource:
    id: str
    title: str
    type: str
    url: str | None
    max_similarity: float
    content: str


@dataclass(frozen=True)
class ConversationTurn:
    role: str  # "user" | "assistant"
    content: str


@dataclass(frozen=True)
class ChatRequest:
    message: str
    user_id: str
    conversation_history: tuple[ConversationTurn, ...] = ()
    channel: str = "web"


@dataclass(frozen=True)
class SourceRef:
    id: str
    title: str
    type: str
    url: str | None = None

    @classmethod
    def from_candidate(cls, candidate: CandidateSource) -> "SourceRef":
        return cls(id=candidate.id, title=candidate.title, type=candidate.type, url=candidate.url)

    def to_dict(self) -> dict[str, str]:
        data = {"id": self.id, "title": self.title, "type": self.type}
        if self.url:
            data["url"] = self.url
        return data


@dataclass
class ChatResult:
    response: str
    sources: list[SourceRef]
    path: RetrievalPath = RetrievalPath.NONE
    trace: list[ChatState] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Wire shape shared by every channel: ``{response, sources}``."""
        return {
            "response": self.response,
            "sources": [source.to_dict() for source in self.sources],
        }
