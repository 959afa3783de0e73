from stashchat.chat.aggregator import aggregate_sources, rank_by_similarity
from stashchat.chat.composer import ContextComposer
from stashchat.chat.config import ChatConfig, load_chat_config
from stashchat.chat.generator import AnswerGenerator
from stashchat.chat.keyword_retriever import KeywordFallbackRetriever
from stashchat.chat.orchestrator import RetrievalOrchestrator
from stashchat.chat.relevance import (
    RelevanceFilter,
    RelevanceFilterUnavailable,
    RelevanceSelected,
)
from stashchat.chat.types import (
    CandidateSource,
    ChatRequest,
    ChatResult,
    ChatState,
    ContentChunk,
    ConversationTurn,
    RetrievalPath,
    SourceRef,
)
from stashchat.chat.vector_retriever import VectorRetriever

__all__ = [
    "AnswerGenerator",
    "CandidateSource",
    "ChatConfig",
    "ChatRequest",
    "ChatResult",
    "ChatState",
    "ContentChunk",
    "ContextComposer",
    "ConversationTurn",
    "KeywordFallbackRetriever",
    "RelevanceFilter",
    "RelevanceFilterUnavailable",
    "RelevanceSelected",
    "RetrievalOrchestrator",
    "RetrievalPath",
    "SourceRef",
    "VectorRetriever",
    "aggregate_sources",
    "load_chat_config",
    "rank_by_similarity",
]
