import json
from typing import Any

import boto3  # type: ignore[import-untyped]
import structlog
from botocore.config import Config  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[import-untyped]

from stashchat.llm.config import BedrockConfig
from stashchat.llm.provider import AbstractChatProvider
from stashchat.llm.types import (
    CompletionSettings,
    Message,
    MessageRole,
    ProviderError,
    ProviderType,
    TextResponse,
    TokenUsage,
)

_logger = structlog.get_logger()


def _split_system(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Anthropic on Bedrock takes system text as a top-level field, not a message."""
    system_parts = [m.content for m in messages if m.role == MessageRole.SYSTEM]
    conversation = [
        {"role": m.role.value, "content": m.content}
        for m in messages
        if m.role != MessageRole.SYSTEM
    ]
    return "\n\n".join(system_parts), conversation


class BedrockProvider(AbstractChatProvider):
    """AWS Bedrock (Anthropic Messages API) provider."""

    config: BedrockConfig

    def __init__(self, config: BedrockConfig) -> None:
        super().__init__(config)
        self._clients: dict[float, Any] = {}

    def identify(self) -> ProviderType:
        return ProviderType.BEDROCK

    def _client_for(self, timeout_seconds: float) -> Any:
        # botocore timeouts are fixed per client, so keep one client per timeout
        if timeout_seconds not in self._clients:
            client_kwargs: dict[str, Any] = {
                "region_name": self.config.region,
                "config": Config(
                    connect_timeout=timeout_seconds,
                    read_timeout=timeout_seconds,
                    retries={"max_attempts": 0},
                ),
            }
            if self.config.api_url:
                client_kwargs["endpoint_url"] = self.config.api_url
            self._clients[timeout_seconds] = boto3.client("bedrock-runtime", **client_kwargs)
        return self._clients[timeout_seconds]

    def complete(self, messages: list[Message], settings: CompletionSettings) -> TextResponse:
        system, conversation = _split_system(messages)

        request_body: dict[str, Any] = {
            "anthropic_version": self.config.anthropic_version,
            "messages": conversation,
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
        }
        if system:
            request_body["system"] = system

        _logger.info(
            "bedrock_request_starting", model=settings.model, message_count=len(conversation)
        )
        try:
            response = self._client_for(settings.timeout_seconds).invoke_model(
                modelId=settings.model,
                body=json.dumps(request_body),
            )
            response_body = json.loads(response["body"].read())
        except (BotoCoreError, ClientError) as exc:
            _logger.warning("bedrock_request_failed", model=settings.model, error=str(exc))
            raise ProviderError(f"Bedrock invocation failed: {exc}") from exc
        except (KeyError, ValueError) as exc:
            raise ProviderError(f"Malformed Bedrock response: {exc}") from exc

        content, usage, stop_reason = _parse_body(response_body)

        _logger.info(
            "bedrock_response_finished",
            model=settings.model,
            reason=stop_reason,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return TextResponse(content=content.strip(), usage=usage)


def _parse_body(response_body: Any) -> tuple[str, TokenUsage, Any]:
    """Pull text, usage and stop reason out of an Anthropic Messages body."""
    try:
        bedrock_usage = response_body.get("usage") or {}
        usage = TokenUsage(
            input_tokens=int(bedrock_usage.get("input_tokens", 0)),
            output_tokens=int(bedrock_usage.get("output_tokens", 0)),
        )
        texts = [
            block.get("text", "")
            for block in response_body.get("content") or []
            if block.get("type") == "text"
        ]
        content = "".join(texts)
    except (AttributeError, TypeError, ValueError) as exc:
        raise ProviderError(f"Malformed Bedrock response: {exc}") from exc
    return content, usage, response_body.get("stop_reason")
