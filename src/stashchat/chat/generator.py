from collections.abc import Sequence

import structlog

from stashchat.chat.types import ConversationTurn
from stashchat.errors import GenerationFailure
from stashchat.llm.provider import AbstractChatProvider
from stashchat.llm.types import CompletionSettings, Message, MessageRole, ProviderError

_logger = structlog.get_logger()

_HISTORY_ROLES = {"user": MessageRole.USER, "assistant": MessageRole.ASSISTANT}


class AnswerGenerator:
    def __init__(
        self,
        provider: AbstractChatProvider,
        settings: CompletionSettings,
        max_history_turns: int = 20,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._max_history_turns = max_history_turns

    def build_messages(
        self,
        context_prompt: str,
        history: Sequence[ConversationTurn],
        question: str,
    ) -> list[Message]:
        """``[system: context] + recent history + [user: question]``."""
        recent = list(history)[-self._max_history_turns :] if self._max_history_turns else []
        messages = [Message(role=MessageRole.SYSTEM, content=context_prompt)]
        for turn in recent:
            role = _HISTORY_ROLES.get(turn.role)
            if role is None:
                _logger.debug("history_turn_skipped", role=turn.role)
                continue
            messages.append(Message(role=role, content=turn.content))
        messages.append(Message(role=MessageRole.USER, content=question))
        return messages

    def generate(
        self,
        context_prompt: str,
        history: Sequence[ConversationTurn],
        question: str,
    ) -> str:
        messages = self.build_messages(context_prompt, history, question)
        try:
            response = self._provider.complete(messages, self._settings)
        except ProviderError as exc:
            raise GenerationFailure(str(exc)) from exc

        if not response.content:
            raise GenerationFailure("Answer model returned no content")

        _logger.info(
            "answer_generated",
            length=len(response.content),
            history_turns=len(messages) - 2,
            total_tokens=response.usage.total_tokens,
        )
        return response.content
