import json
import re
from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from stashchat.chat.aggregator import rank_by_similarity
from stashchat.chat.types import CandidateSource
from stashchat.llm.provider import AbstractChatProvider
from stashchat.llm.types import CompletionSettings, Message, MessageRole, ProviderError

_logger = structlog.get_logger()

_SYSTEM_PROMPT = (
    "You are a precise source evaluator. "
    "Return only a JSON array of the most relevant source IDs."
)

_USER_PROMPT = """Given the user's question: "{question}"

Here are the potential sources with their content snippets:
{listing}

Identify the 1-{limit} most relevant sources that directly help answer the user's question. \
Return only the source IDs as a JSON array, ordered by relevance (most relevant first).

For example: ["id1", "id2", "id3"]

Be selective. If no source is truly relevant, return an empty array: []"""

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class RelevanceSelected:
    ids: tuple[str, ...]


@dataclass(frozen=True)
class RelevanceFilterUnavailable:
    reason: str


type RelevanceOutcome = RelevanceSelected | RelevanceFilterUnavailable


def parse_selection(raw: str) -> RelevanceOutcome:
    """Interpret the judge's reply, which must be a JSON array of strings."""
    body = raw.strip()
    if fenced := _FENCE.match(body):
        body = fenced.group(1)

    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        return RelevanceFilterUnavailable(reason=f"invalid JSON: {exc.msg}")

    if not isinstance(parsed, list):
        return RelevanceFilterUnavailable(reason=f"expected array, got {type(parsed).__name__}")
    if not all(isinstance(item, str) for item in parsed):
        return RelevanceFilterUnavailable(reason="array contains non-string ids")

    return RelevanceSelected(ids=tuple(dict.fromkeys(parsed)))


class RelevanceFilter:
    """Asks a model which candidates actually answer the question.

    Falls back to similarity ranking whenever the judge is unavailable.
    """

    def __init__(
        self,
        provider: AbstractChatProvider,
        settings: CompletionSettings,
        snippet_chars: int = 200,
        max_sources: int = 3,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._snippet_chars = snippet_chars
        self._max_sources = max_sources

    def build_prompt(self, question: str, candidates: Mapping[str, CandidateSource]) -> str:
        listing = "\n".join(
            f'{index}. ID: {source.id}, Title: "{source.title}", '
            f'Content snippet: "{source.content[: self._snippet_chars]}..."'
            for index, source in enumerate(candidates.values(), 1)
        )
        return _USER_PROMPT.format(question=question, listing=listing, limit=self._max_sources)

    def evaluate(
        self,
        question: str,
        candidates: Mapping[str, CandidateSource],
    ) -> RelevanceOutcome:
        messages = [
            Message(role=MessageRole.SYSTEM, content=_SYSTEM_PROMPT),
            Message(role=MessageRole.USER, content=self.build_prompt(question, candidates)),
        ]
        try:
            response = self._provider.complete(messages, self._settings)
        except ProviderError as exc:
            return RelevanceFilterUnavailable(reason=str(exc))

        return parse_selection(response.content)

    def select(
        self,
        question: str,
        candidates: Mapping[str, CandidateSource],
    ) -> list[CandidateSource]:
        """Up to ``max_sources`` candidates, most relevant first; possibly empty."""
        if not candidates:
            return []

        match self.evaluate(question, candidates):
            case RelevanceSelected(ids=ids):
                selected = [candidates[i] for i in ids if i in candidates][: self._max_sources]
                _logger.info(
                    "relevance_filter_selected",
                    requested=len(ids),
                    selected=[s.id for s in selected],
                    dropped_unknown=len([i for i in ids if i not in candidates]),
                )
                return selected
            case RelevanceFilterUnavailable(reason=reason):
                ranked = rank_by_similarity(candidates, limit=self._max_sources)
                _logger.warning(
                    "relevance_filter_unavailable",
                    reason=reason,
                    fallback=[s.id for s in ranked],
                )
                return ranked
