import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

import structlog

from stashchat.chat.aggregator import aggregate_sources
from stashchat.chat.composer import ContextComposer
from stashchat.chat.config import ChatConfig
from stashchat.chat.generator import AnswerGenerator
from stashchat.chat.keyword_retriever import KeywordFallbackRetriever
from stashchat.chat.relevance import RelevanceFilter
from stashchat.chat.types import (
    CandidateSource,
    ChatRequest,
    ChatResult,
    ChatState,
    ContentChunk,
    RetrievalPath,
    SourceRef,
)
from stashchat.chat.vector_retriever import VectorRetriever
from stashchat.embedding.provider import AbstractEmbeddingProvider
from stashchat.errors import ChatCancelled, EmbeddingUnavailable, GenerationFailure, RetrievalEmpty
from stashchat.llm.provider import AbstractChatProvider

_logger = structlog.get_logger()

_TERMINAL = frozenset({ChatState.DONE, ChatState.FAILED})

TRANSITIONS: Mapping[ChatState, frozenset[ChatState]] = MappingProxyType(
    {
        ChatState.EMBEDDING: frozenset({ChatState.VECTOR_SEARCH, ChatState.KEYWORD_FALLBACK}),
        ChatState.VECTOR_SEARCH: frozenset({ChatState.AGGREGATE, ChatState.KEYWORD_FALLBACK}),
        ChatState.AGGREGATE: frozenset({ChatState.FILTER}),
        ChatState.FILTER: frozenset({ChatState.COMPOSE}),
        ChatState.KEYWORD_FALLBACK: frozenset({ChatState.COMPOSE}),
        ChatState.COMPOSE: frozenset({ChatState.GENERATE}),
        ChatState.GENERATE: frozenset({ChatState.DONE, ChatState.FAILED}),
    }
)


@dataclass
class _Run:
    """Mutable working set of one request; discarded when the request ends."""

    request: ChatRequest
    threshold: float
    cancel_event: threading.Event | None
    embedding: list[float] = field(default_factory=list)
    chunks: list[ContentChunk] = field(default_factory=list)
    candidates: Mapping[str, CandidateSource] = field(default_factory=dict)
    sources: list[SourceRef] = field(default_factory=list)
    path: RetrievalPath = RetrievalPath.NONE
    prompt: str = ""
    response: str = ""
    trace: list[ChatState] = field(default_factory=list)

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ChatCancelled(f"Request cancelled during {self.trace[-1].value}")


class RetrievalOrchestrator:
    """Answers a question from the user's own saved content.

    Runs a fixed state machine: embed, vector search, aggregate, relevance
    filter, compose, generate. An embedding failure or an empty vector search
    switches to keyword/recency retrieval instead. Only answer generation can
    fail the request, and even then the caller gets an apology, not an error.
    """

    def __init__(
        self,
        config: ChatConfig,
        embedding_provider: AbstractEmbeddingProvider,
        vector_retriever: VectorRetriever,
        keyword_retriever: KeywordFallbackRetriever,
        relevance_filter: RelevanceFilter,
        composer: ContextComposer,
        generator: AnswerGenerator,
    ) -> None:
        self._config = config
        self._embedding_provider = embedding_provider
        self._vector_retriever = vector_retriever
        self._keyword_retriever = keyword_retriever
        self._relevance_filter = relevance_filter
        self._composer = composer
        self._generator = generator
        self._handlers: dict[ChatState, Callable[[_Run], ChatState]] = {
            ChatState.EMBEDDING: self._embed,
            ChatState.VECTOR_SEARCH: self._vector_search,
            ChatState.AGGREGATE: self._aggregate,
            ChatState.FILTER: self._filter,
            ChatState.KEYWORD_FALLBACK: self._keyword_fallback,
            ChatState.COMPOSE: self._compose,
            ChatState.GENERATE: self._generate,
        }

    @classmethod
    def from_config(
        cls,
        config: ChatConfig,
        embedding_provider: AbstractEmbeddingProvider,
        chat_provider: AbstractChatProvider,
    ) -> "RetrievalOrchestrator":
        return cls(
            config=config,
            embedding_provider=embedding_provider,
            vector_retriever=VectorRetriever(
                config.retrieval, dimensions=config.embedding.dimensions
            ),
            keyword_retriever=KeywordFallbackRetriever(config.fallback),
            relevance_filter=RelevanceFilter(
                chat_provider,
                config.relevance,
                snippet_chars=config.context.snippet_chars,
                max_sources=config.context.max_sources,
            ),
            composer=ContextComposer(config.context),
            generator=AnswerGenerator(
                chat_provider,
                config.answer,
                max_history_turns=config.context.max_history_turns,
            ),
        )

    def chat(
        self,
        request: ChatRequest,
        cancel_event: threading.Event | None = None,
    ) -> ChatResult:
        """Run one request to completion.

        Raises:
            ValueError: the question is blank
            ChatCancelled: *cancel_event* was set before the run finished
        """
        if not request.message.strip():
            raise ValueError("Chat message must not be empty")

        run = _Run(
            request=request,
            threshold=self._config.threshold_for(request.channel),
            cancel_event=cancel_event,
        )

        with structlog.contextvars.bound_contextvars(
            user_id=request.user_id, channel=request.channel
        ):
            _logger.info(
                "chat_request_received",
                question_preview=request.message[:100],
                history_turns=len(request.conversation_history),
                threshold=run.threshold,
            )
            self._drive(run)
            _logger.info(
                "chat_request_finished",
                state=run.trace[-1].value,
                path=run.path.value,
                sources=[s.id for s in run.sources],
                trace=[s.value for s in run.trace],
            )

        return ChatResult(
            response=run.response,
            sources=run.sources,
            path=run.path,
            trace=run.trace,
        )

    def _drive(self, run: _Run) -> None:
        state = ChatState.EMBEDDING
        run.trace.append(state)

        while state not in _TERMINAL:
            try:
                next_state = self._handlers[state](run)
                # a stage that finished after cancellation has its output discarded
                run.check_cancelled()
            except ChatCancelled:
                _logger.info("chat_request_cancelled", state=state.value)
                raise
            except Exception:
                _logger.exception("chat_pipeline_failed", state=state.value)
                self._fail(run)
                next_state = ChatState.FAILED
            else:
                if next_state not in TRANSITIONS[state]:
                    raise RuntimeError(f"Illegal transition {state.value} -> {next_state.value}")

            state = next_state
            run.trace.append(state)

    def _fail(self, run: _Run) -> None:
        run.response = self._config.generation_failure_message
        run.sources = []

    # -- states --------------------------------------------------------------

    def _embed(self, run: _Run) -> ChatState:
        run.check_cancelled()
        try:
            run.embedding = self._embedding_provider.embed_query(run.request.message)
        except EmbeddingUnavailable as exc:
            _logger.warning("embedding_unavailable", error=str(exc))
            return ChatState.KEYWORD_FALLBACK
        return ChatState.VECTOR_SEARCH

    def _vector_search(self, run: _Run) -> ChatState:
        run.check_cancelled()
        try:
            run.chunks = self._vector_retriever.search(
                run.embedding,
                run.request.user_id,
                match_threshold=run.threshold,
            )
        except RetrievalEmpty as exc:
            _logger.warning("vector_retrieval_empty", reason=str(exc))
            return ChatState.KEYWORD_FALLBACK
        run.path = RetrievalPath.VECTOR
        return ChatState.AGGREGATE

    def _aggregate(self, run: _Run) -> ChatState:
        run.candidates = aggregate_sources(run.chunks)
        _logger.debug(
            "sources_aggregated", chunks=len(run.chunks), candidates=len(run.candidates)
        )
        return ChatState.FILTER

    def _filter(self, run: _Run) -> ChatState:
        run.check_cancelled()
        selected = self._relevance_filter.select(run.request.message, run.candidates)
        run.sources = [SourceRef.from_candidate(source) for source in selected]
        return ChatState.COMPOSE

    def _keyword_fallback(self, run: _Run) -> ChatState:
        run.check_cancelled()
        result = self._keyword_retriever.retrieve(run.request.message, run.request.user_id)
        run.chunks = result.chunks
        run.path = result.path

        # recent items are context only, never cited as evidence
        if result.path is RetrievalPath.KEYWORD:
            matched = aggregate_sources(result.chunks)
            run.sources = [
                SourceRef.from_candidate(candidate)
                for candidate in list(matched.values())[: self._config.context.max_sources]
            ]
        _logger.info(
            "keyword_fallback_used", path=result.path.value, chunks=len(result.chunks)
        )
        return ChatState.COMPOSE

    def _compose(self, run: _Run) -> ChatState:
        run.prompt = self._composer.compose(
            run.chunks,
            run.request.message,
            low_confidence=run.path.low_confidence,
        )
        return ChatState.GENERATE

    def _generate(self, run: _Run) -> ChatState:
        run.check_cancelled()
        try:
            run.response = self._generator.generate(
                run.prompt,
                run.request.conversation_history,
                run.request.message,
            )
        except GenerationFailure:
            _logger.exception("answer_generation_failed")
            self._fail(run)
            return ChatState.FAILED
        return ChatState.DONE
