from typing import Any

import structlog
from openai import OpenAI, OpenAIError

from stashchat.llm.config import OpenAIConfig
from stashchat.llm.provider import AbstractChatProvider
from stashchat.llm.types import (
    CompletionSettings,
    Message,
    ProviderError,
    ProviderType,
    TextResponse,
    TokenUsage,
)

_logger = structlog.get_logger()


def _message_to_provider_format(message: Message) -> dict[str, Any]:
    return {"role": message.role.value, "content": message.content}


class OpenAIProvider(AbstractChatProvider):
    """OpenAI chat-completions provider."""

    config: OpenAIConfig

    def __init__(self, config: OpenAIConfig) -> None:
        super().__init__(config)
        self.client = OpenAI(
            api_key=config.api_key,
            base_url=config.api_url,
            max_retries=0,
        )

    def identify(self) -> ProviderType:
        return ProviderType.OPENAI

    def complete(self, messages: list[Message], settings: CompletionSettings) -> TextResponse:
        _logger.info(
            "openai_request_starting", model=settings.model, message_count=len(messages)
        )
        params: dict[str, Any] = {
            "model": settings.model,
            "messages": [_message_to_provider_format(m) for m in messages],
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "timeout": settings.timeout_seconds,
        }

        try:
            response = self.client.chat.completions.create(**params)
        except OpenAIError as exc:
            _logger.warning("openai_request_failed", model=settings.model, error=str(exc))
            raise ProviderError(f"OpenAI chat completion failed: {exc}") from exc

        if not response.choices:
            raise ProviderError("OpenAI response contained no choices")

        choice = response.choices[0]
        usage = TokenUsage(
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
        )

        _logger.info(
            "openai_response_finished",
            model=settings.model,
            reason=choice.finish_reason,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return TextResponse(content=(choice.message.content or "").strip(), usage=usage)
