from collections.abc import Sequence
from functools import cache
from typing import Protocol

import structlog
import tiktoken

from stashchat.chat.config import ContextConfig
from stashchat.chat.types import ContentChunk

_logger = structlog.get_logger()

_MIN_TRUNCATED_TOKENS = 50

_PREAMBLE = """You are an AI assistant helping the user work with their personal content \
collection. You have access to their notes, saved articles, recordings, and other personal \
information.

IMPORTANT: When providing information, be comprehensive and include ALL relevant details you \
find. Base your answer only on the user's content below and cite specific information from it.

Here's the relevant content from their collection:

"""

_LOW_CONFIDENCE_NOTE = """NOTE: Nothing in the collection clearly matched this question. The \
items below are simply the user's most recent saves and may be unrelated. Use them only if they \
genuinely help, and make clear that you are not sure they answer the question.

"""

_NO_CONTENT = "No specific relevant content found in the user's collection.\n\n"

_CLOSING = """
Please provide a helpful, comprehensive response based on the relevant information above. If \
you found relevant information, reference it specifically. If no relevant information was \
found, say so honestly instead of guessing.

User's question: {question}"""


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


@cache
def default_tokenizer() -> Tokenizer:
    return tiktoken.get_encoding("cl100k_base")


class ContextComposer:
    """Renders retrieved chunks into the grounding system prompt."""

    def __init__(self, config: ContextConfig, tokenizer: Tokenizer | None = None) -> None:
        self._config = config
        self._tokenizer = tokenizer

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            self._tokenizer = default_tokenizer()
        return self._tokenizer

    def compose(
        self,
        chunks: Sequence[ContentChunk],
        question: str,
        low_confidence: bool = False,
    ) -> str:
        parts = [_PREAMBLE]

        if chunks:
            if low_confidence:
                parts.append(_LOW_CONFIDENCE_NOTE)
            parts.extend(self._fit_to_budget(chunks))
        else:
            parts.append(_NO_CONTENT)

        parts.append(_CLOSING.format(question=question))
        prompt = "".join(parts)

        _logger.debug(
            "context_composed",
            chunks=len(chunks),
            low_confidence=low_confidence,
            characters=len(prompt),
        )
        return prompt

    def _fit_to_budget(self, chunks: Sequence[ContentChunk]) -> list[str]:
        remaining = self._config.max_context_tokens
        entries: list[str] = []

        for index, chunk in enumerate(chunks, 1):
            entry = (
                f'[Source {index} - "{chunk.item_title or "Untitled"}" ({chunk.item_type})]: '
                f"{chunk.content}\n\n"
            )
            tokens = self.tokenizer.encode(entry)

            if len(tokens) <= remaining:
                entries.append(entry)
                remaining -= len(tokens)
                continue

            if remaining >= _MIN_TRUNCATED_TOKENS:
                entries.append(self.tokenizer.decode(tokens[:remaining]).rstrip() + "...\n\n")
            _logger.info(
                "context_budget_reached",
                included=len(entries),
                dropped=len(chunks) - len(entries),
                budget=self._config.max_context_tokens,
            )
            break

        return entries
