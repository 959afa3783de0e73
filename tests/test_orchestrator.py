import io
import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from stashchat.chat.composer import ContextComposer
from stashchat.chat.config import ChannelConfig, ChatConfig, ContextConfig, RetrievalConfig
from stashchat.chat.generator import AnswerGenerator
from stashchat.chat.keyword_retriever import FallbackResult
from stashchat.chat.orchestrator import TRANSITIONS, RetrievalOrchestrator
from stashchat.chat.relevance import RelevanceFilter
from stashchat.chat.types import (
    ChatRequest,
    ChatState,
    ContentChunk,
    ConversationTurn,
    RetrievalPath,
    SourceRef,
)
from stashchat.chat.vector_retriever import VectorRetriever
from stashchat.embedding.adapters.bedrock import BedrockEmbeddingProvider
from stashchat.embedding.config import BedrockEmbeddingConfig, OpenAIEmbeddingConfig
from stashchat.embedding.provider import AbstractEmbeddingProvider
from stashchat.errors import ChatCancelled, EmbeddingUnavailable
from stashchat.llm.config import OpenAIConfig
from stashchat.llm.types import (
    CompletionSettings,
    Message,
    ProviderError,
    TextResponse,
    TokenUsage,
)

_USER = "11111111-1111-1111-1111-111111111111"
_ANSWER = CompletionSettings(model="answer", max_tokens=1500, temperature=0.3, timeout_seconds=60)
_JUDGE = CompletionSettings(model="judge", max_tokens=200, temperature=0.1, timeout_seconds=20)


class _FakeEmbeddingProvider(AbstractEmbeddingProvider):
    def __init__(self, fail: bool = False) -> None:
        super().__init__(OpenAIEmbeddingConfig(model="emb", dimensions=3, api_key="k"))
        self.fail = fail

    def embed(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise EmbeddingUnavailable("connection refused")
        return [[0.1, 0.2, 0.3] for _ in texts]


class _CharTokenizer:
    def encode(self, text: str) -> list[int]:
        return [ord(char) for char in text]

    def decode(self, tokens: list[int]) -> str:
        return "".join(chr(token) for token in tokens)


class _FakeChatProvider:
    """Answers the judge with ``judge_reply`` and the answer model with ``answer``."""

    def __init__(self, judge_reply: str = "[]", answer: str = "Thursday at 3pm.") -> None:
        self.judge_reply = judge_reply
        self.answer = answer
        self.answer_error: Exception | None = None
        self.calls: list[tuple[list[Message], CompletionSettings]] = []

    def complete(self, messages: list[Message], settings: CompletionSettings) -> TextResponse:
        self.calls.append((messages, settings))
        usage = TokenUsage(input_tokens=1, output_tokens=1)
        if settings.model == _JUDGE.model:
            return TextResponse(content=self.judge_reply, usage=usage)
        if self.answer_error is not None:
            raise self.answer_error
        return TextResponse(content=self.answer, usage=usage)

    def answer_prompt(self) -> str:
        return next(m for m, s in self.calls if s.model == _ANSWER.model)[0].content


def _row(item_id: str, title: str, content: str, similarity: float) -> MagicMock:
    row = MagicMock()
    row.content_chunk = content
    row.similarity = similarity
    row.item_id = item_id
    row.item_title = title
    row.item_type = "text"
    row.item_url = None
    return row


def _config(**channels: float) -> ChatConfig:
    return ChatConfig(
        database_url="sqlite://",
        embedding=OpenAIEmbeddingConfig(model="emb", dimensions=3, api_key="k"),
        llm=OpenAIConfig(api_key="k"),
        answer=_ANSWER,
        relevance=_JUDGE,
        retrieval=RetrievalConfig(),
        context=ContextConfig(),
        channels={name: ChannelConfig(match_threshold=t) for name, t in channels.items()},
    )


def _orchestrator(
    chat_provider: _FakeChatProvider,
    embedding_provider: AbstractEmbeddingProvider | None = None,
    keyword_result: FallbackResult | None = None,
    config: ChatConfig | None = None,
) -> tuple[RetrievalOrchestrator, MagicMock]:
    config = config or _config()
    keyword_retriever = MagicMock()
    keyword_retriever.retrieve.return_value = keyword_result or FallbackResult(
        chunks=[], path=RetrievalPath.NONE
    )
    orchestrator = RetrievalOrchestrator(
        config=config,
        embedding_provider=embedding_provider or _FakeEmbeddingProvider(),
        vector_retriever=VectorRetriever(config.retrieval, dimensions=3),
        keyword_retriever=keyword_retriever,
        relevance_filter=RelevanceFilter(chat_provider, _JUDGE),  # type: ignore[arg-type]
        composer=ContextComposer(config.context, tokenizer=_CharTokenizer()),
        generator=AnswerGenerator(chat_provider, _ANSWER),  # type: ignore[arg-type]
    )
    return orchestrator, keyword_retriever


def _chat(
    orchestrator: RetrievalOrchestrator,
    rows: list[MagicMock],
    request: ChatRequest,
    cancel_event: threading.Event | None = None,
):  # type: ignore[no-untyped-def]
    mock_session = MagicMock()
    mock_session.execute.return_value.fetchall.return_value = rows

    with patch("stashchat.chat.vector_retriever.get_session") as mock_get_session:
        mock_get_session.return_value.__enter__ = MagicMock(return_value=mock_session)
        mock_get_session.return_value.__exit__ = MagicMock(return_value=False)
        return orchestrator.chat(request, cancel_event=cancel_event), mock_session


_DENTIST_ROWS = [
    _row("dentist", "Dentist - Dr. Lee, 3pm Thu", "Dentist - Dr. Lee, 3pm Thu", 0.81),
    _row("garden", "Tomato planting", "Tomatoes go in after the last frost", 0.40),
]
_DENTIST_QUESTION = ChatRequest(
    message="When is my dentist appointment?", user_id=_USER, channel="web"
)


class TestVectorPath:
    def test_dentist_question_cites_only_the_dentist_note(self) -> None:
        provider = _FakeChatProvider(judge_reply='["dentist"]')
        orchestrator, keyword_retriever = _orchestrator(provider)

        result, _ = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)

        assert result.sources == [
            SourceRef(id="dentist", title="Dentist - Dr. Lee, 3pm Thu", type="text")
        ]
        assert result.response == "Thursday at 3pm."
        assert result.path == RetrievalPath.VECTOR
        assert result.trace == [
            ChatState.EMBEDDING,
            ChatState.VECTOR_SEARCH,
            ChatState.AGGREGATE,
            ChatState.FILTER,
            ChatState.COMPOSE,
            ChatState.GENERATE,
            ChatState.DONE,
        ]
        prompt = provider.answer_prompt()
        assert "Dr. Lee" in prompt
        assert "Tomatoes" not in prompt
        keyword_retriever.retrieve.assert_not_called()

    def test_wire_shape(self) -> None:
        orchestrator, _ = _orchestrator(_FakeChatProvider(judge_reply='["dentist"]'))

        result, _ = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)

        assert result.to_dict() == {
            "response": "Thursday at 3pm.",
            "sources": [{"id": "dentist", "title": "Dentist - Dr. Lee, 3pm Thu", "type": "text"}],
        }

    def test_same_request_gives_same_sources(self) -> None:
        orchestrator, _ = _orchestrator(_FakeChatProvider(judge_reply="not json"))

        first, _ = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)
        second, _ = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)

        assert first.sources == second.sources
        assert [s.id for s in first.sources] == ["dentist"]

    def test_history_is_forwarded_to_the_answer_model(self) -> None:
        provider = _FakeChatProvider(judge_reply='["dentist"]')
        orchestrator, _ = _orchestrator(provider)
        request = ChatRequest(
            message="And the time?",
            user_id=_USER,
            conversation_history=(
                ConversationTurn(role="user", content="Do I have a dentist visit?"),
                ConversationTurn(role="assistant", content="Yes, with Dr. Lee."),
            ),
        )

        _chat(orchestrator, _DENTIST_ROWS, request)

        messages = next(m for m, s in provider.calls if s.model == _ANSWER.model)
        assert [m.content for m in messages[1:]] == [
            "Do I have a dentist visit?",
            "Yes, with Dr. Lee.",
            "And the time?",
        ]

    def test_channel_threshold_is_used_for_search(self) -> None:
        orchestrator, _ = _orchestrator(
            _FakeChatProvider(judge_reply='["dentist"]'), config=_config(sms=0.9)
        )
        request = ChatRequest(message="dentist?", user_id=_USER, channel="sms")

        _, session = _chat(orchestrator, _DENTIST_ROWS, request)

        assert session.execute.call_args[0][1]["match_threshold"] == 0.9


class TestFallbackPaths:
    def test_embedding_failure_switches_to_keyword_search(self) -> None:
        keyword_chunk = ContentChunk(
            content="Dentist - Dr. Lee, 3pm Thu",
            similarity=1.0,
            item_id="dentist",
            item_title="Dentist - Dr. Lee, 3pm Thu",
            item_type="text",
        )
        provider = _FakeChatProvider()
        orchestrator, keyword_retriever = _orchestrator(
            provider,
            embedding_provider=_FakeEmbeddingProvider(fail=True),
            keyword_result=FallbackResult(chunks=[keyword_chunk], path=RetrievalPath.KEYWORD),
        )

        result, session = _chat(orchestrator, [], _DENTIST_QUESTION)

        assert result.trace == [
            ChatState.EMBEDDING,
            ChatState.KEYWORD_FALLBACK,
            ChatState.COMPOSE,
            ChatState.GENERATE,
            ChatState.DONE,
        ]
        assert result.path == RetrievalPath.KEYWORD
        assert [s.id for s in result.sources] == ["dentist"]
        assert result.response == "Thursday at 3pm."
        keyword_retriever.retrieve.assert_called_once_with(_DENTIST_QUESTION.message, _USER)
        session.execute.assert_not_called()

    def test_unusable_bedrock_vector_switches_to_keyword_search(self) -> None:
        with patch("stashchat.embedding.adapters.bedrock.boto3") as mock_boto3:
            mock_boto3.client.return_value.invoke_model.return_value = {
                "body": io.BytesIO(json.dumps({"embedding": [0.1, None, 0.3]}).encode())
            }
            embedding_provider = BedrockEmbeddingProvider(
                BedrockEmbeddingConfig(model="titan", dimensions=3, region="us-east-1")
            )
        orchestrator, keyword_retriever = _orchestrator(
            _FakeChatProvider(), embedding_provider=embedding_provider
        )

        result, session = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)

        assert result.trace[:2] == [ChatState.EMBEDDING, ChatState.KEYWORD_FALLBACK]
        assert result.trace[-1] == ChatState.DONE
        assert ChatState.FAILED not in result.trace
        keyword_retriever.retrieve.assert_called_once()
        session.execute.assert_not_called()

    def test_empty_vector_search_switches_to_keyword_search(self) -> None:
        orchestrator, keyword_retriever = _orchestrator(_FakeChatProvider())

        result, _ = _chat(orchestrator, [_row("x", "Far away", "nope", 0.2)], _DENTIST_QUESTION)

        assert ChatState.KEYWORD_FALLBACK in result.trace
        assert ChatState.FILTER not in result.trace
        keyword_retriever.retrieve.assert_called_once()

    def test_empty_corpus_answers_without_sources(self) -> None:
        provider = _FakeChatProvider(answer="I couldn't find anything about that.")
        orchestrator, _ = _orchestrator(provider)

        result, _ = _chat(orchestrator, [], _DENTIST_QUESTION)

        assert result.sources == []
        assert result.path == RetrievalPath.NONE
        assert result.trace[-1] == ChatState.DONE
        assert "No specific relevant content found" in provider.answer_prompt()

    def test_recent_items_are_context_but_never_cited(self) -> None:
        recent = ContentChunk(
            content="Buy milk", similarity=0.5, item_id="milk", item_title="Milk", item_type="text"
        )
        provider = _FakeChatProvider()
        orchestrator, _ = _orchestrator(
            provider,
            keyword_result=FallbackResult(chunks=[recent], path=RetrievalPath.RECENT),
        )

        result, _ = _chat(orchestrator, [], _DENTIST_QUESTION)

        assert result.sources == []
        prompt = provider.answer_prompt()
        assert "Buy milk" in prompt
        assert "may be unrelated" in prompt

    def test_keyword_matches_are_not_flagged_as_unrelated(self) -> None:
        matched = ContentChunk(
            content="Dentist Dr. Lee",
            similarity=1.0,
            item_id="d",
            item_title="Dentist",
            item_type="text",
        )
        provider = _FakeChatProvider()
        orchestrator, _ = _orchestrator(
            provider,
            embedding_provider=_FakeEmbeddingProvider(fail=True),
            keyword_result=FallbackResult(chunks=[matched], path=RetrievalPath.KEYWORD),
        )

        _chat(orchestrator, [], _DENTIST_QUESTION)

        prompt = provider.answer_prompt()
        assert "Dentist Dr. Lee" in prompt
        assert "may be unrelated" not in prompt

    def test_judge_failure_does_not_fail_the_request(self) -> None:
        provider = _FakeChatProvider()
        orchestrator, _ = _orchestrator(provider)
        provider.judge_reply = "Sure! The dentist one."

        result, _ = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)

        assert result.trace[-1] == ChatState.DONE
        assert [s.id for s in result.sources] == ["dentist"]


class TestFailures:
    def test_generation_failure_returns_apology_without_sources(self) -> None:
        provider = _FakeChatProvider(judge_reply='["dentist"]')
        provider.answer_error = ProviderError("503 upstream")
        orchestrator, _ = _orchestrator(provider)

        result, _ = _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION)

        assert result.trace[-1] == ChatState.FAILED
        assert result.response == _config().generation_failure_message
        assert result.sources == []

    def test_unexpected_error_fails_with_apology(self) -> None:
        orchestrator, keyword_retriever = _orchestrator(
            _FakeChatProvider(), embedding_provider=_FakeEmbeddingProvider(fail=True)
        )
        keyword_retriever.retrieve.side_effect = KeyError("boom")

        result, _ = _chat(orchestrator, [], _DENTIST_QUESTION)

        assert result.trace == [ChatState.EMBEDDING, ChatState.KEYWORD_FALLBACK, ChatState.FAILED]
        assert result.response == _config().generation_failure_message

    def test_cancelled_request_raises(self) -> None:
        provider = _FakeChatProvider()
        orchestrator, _ = _orchestrator(provider)
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(ChatCancelled):
            _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION, cancel_event=cancel_event)

        assert provider.calls == []

    def test_cancel_during_answer_call_discards_the_answer(self) -> None:
        cancel_event = threading.Event()

        class _CancellingProvider(_FakeChatProvider):
            def complete(
                self, messages: list[Message], settings: CompletionSettings
            ) -> TextResponse:
                response = super().complete(messages, settings)
                if settings.model == _ANSWER.model:
                    cancel_event.set()
                return response

        provider = _CancellingProvider(judge_reply='["dentist"]')
        orchestrator, _ = _orchestrator(provider)

        with pytest.raises(ChatCancelled, match="generate"):
            _chat(orchestrator, _DENTIST_ROWS, _DENTIST_QUESTION, cancel_event=cancel_event)

        assert [s.model for _, s in provider.calls] == ["judge", "answer"]

    @pytest.mark.parametrize("message", ["", "   "])
    def test_blank_message_is_rejected(self, message: str) -> None:
        orchestrator, _ = _orchestrator(_FakeChatProvider())

        with pytest.raises(ValueError):
            orchestrator.chat(ChatRequest(message=message, user_id=_USER))


def test_terminal_states_have_no_outgoing_transitions() -> None:
    assert ChatState.DONE not in TRANSITIONS
    assert ChatState.FAILED not in TRANSITIONS
    assert all(ChatState.EMBEDDING not in targets for targets in TRANSITIONS.values())


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        (RetrievalPath.VECTOR, False),
        (RetrievalPath.KEYWORD, False),
        (RetrievalPath.RECENT, True),
        (RetrievalPath.NONE, True),
    ],
)
def test_only_unmatched_paths_are_low_confidence(path: RetrievalPath, expected: bool) -> None:
    assert path.low_confidence is expected
