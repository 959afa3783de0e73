from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stashchat.embedding.config import (
    AbstractEmbeddingConfig,
    BedrockEmbeddingConfig,
    EmbeddingProviderType,
    OpenAIEmbeddingConfig,
)
from stashchat.llm.config import AbstractProviderConfig, parse_provider_config
from stashchat.llm.types import CompletionSettings
from stashchat.util import PROJECT_ROOT, load_yaml_config

_CHAT_CONFIG_PATH = PROJECT_ROOT / "config" / "chat.yaml"

_DEFAULT_ANSWER = CompletionSettings(
    model="gpt-4o-mini", max_tokens=1500, temperature=0.3, timeout_seconds=60.0
)
_DEFAULT_RELEVANCE = CompletionSettings(
    model="gpt-4.1-2025-04-14", max_tokens=200, temperature=0.1, timeout_seconds=20.0
)


@dataclass
class RetrievalConfig:
    match_threshold: float = 0.75  # cosine similarity, 1 - cosine distance
    match_count: int = 10
    display_count: int = 8
    statement_timeout_ms: int = 5000


@dataclass
class FallbackConfig:
    keyword_limit: int = 3
    min_token_length: int = 4
    recent_limit: int = 10
    recent_similarity: float = 0.5


@dataclass
class ContextConfig:
    max_context_tokens: int = 6000
    snippet_chars: int = 200
    max_history_turns: int = 20
    max_sources: int = 3


@dataclass
class ChannelConfig:
    match_threshold: float | None = None


@dataclass
class LoggingConfig:
    json_output: bool = True
    log_level: str = "INFO"


@dataclass
class ChatConfig:
    database_url: str
    embedding: AbstractEmbeddingConfig
    llm: AbstractProviderConfig
    answer: CompletionSettings = _DEFAULT_ANSWER
    relevance: CompletionSettings = _DEFAULT_RELEVANCE
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    generation_failure_message: str = (
        "Sorry, I couldn't generate a response right now. Please try again in a moment."
    )

    def threshold_for(self, channel: str) -> float:
        """Similarity threshold for *channel*, falling back to the global one."""
        channel_config = self.channels.get(channel)
        if channel_config and channel_config.match_threshold is not None:
            return channel_config.match_threshold
        return self.retrieval.match_threshold


def load_chat_config(config_path: Path = _CHAT_CONFIG_PATH) -> ChatConfig:
    raw = load_yaml_config(config_path, required_vars={"DATABASE_URL"})
    return parse_chat_config(raw)


def parse_chat_config(raw: dict[str, Any]) -> ChatConfig:
    database_url = raw.get("database_url", "")
    if not database_url:
        raise ValueError("Missing 'database_url' in chat config")

    if "embedding" not in raw:
        raise ValueError("Missing 'embedding' section in chat config")
    if "llm" not in raw:
        raise ValueError("Missing 'llm' section in chat config")

    retrieval_raw = raw.get("retrieval", {})
    fallback_raw = raw.get("fallback", {})
    context_raw = raw.get("context", {})
    logging_raw = raw.get("logging", {})

    retrieval = RetrievalConfig(
        match_threshold=_similarity(
            retrieval_raw.get("match_threshold", 0.75), "retrieval.match_threshold"
        ),
        match_count=int(retrieval_raw.get("match_count", 10)),
        display_count=int(retrieval_raw.get("display_count", 8)),
        statement_timeout_ms=int(retrieval_raw.get("statement_timeout_ms", 5000)),
    )
    if retrieval.display_count > retrieval.match_count:
        raise ValueError("'retrieval.display_count' cannot exceed 'retrieval.match_count'")

    config = ChatConfig(
        database_url=database_url,
        embedding=_parse_embedding_config(raw["embedding"]),
        llm=parse_provider_config(raw["llm"]),
        answer=_parse_completion(raw.get("answer"), _DEFAULT_ANSWER),
        relevance=_parse_completion(raw.get("relevance"), _DEFAULT_RELEVANCE),
        retrieval=retrieval,
        fallback=FallbackConfig(
            keyword_limit=int(fallback_raw.get("keyword_limit", 3)),
            min_token_length=int(fallback_raw.get("min_token_length", 4)),
            recent_limit=int(fallback_raw.get("recent_limit", 10)),
            recent_similarity=_similarity(
                fallback_raw.get("recent_similarity", 0.5), "fallback.recent_similarity"
            ),
        ),
        context=ContextConfig(
            max_context_tokens=int(context_raw.get("max_context_tokens", 6000)),
            snippet_chars=int(context_raw.get("snippet_chars", 200)),
            max_history_turns=int(context_raw.get("max_history_turns", 20)),
            max_sources=int(context_raw.get("max_sources", 3)),
        ),
        channels=_parse_channels(raw.get("channels") or {}),
        logging=LoggingConfig(
            json_output=bool(logging_raw.get("json_output", True)),
            log_level=str(logging_raw.get("log_level", "INFO")),
        ),
    )
    if message := raw.get("generation_failure_message"):
        config.generation_failure_message = str(message)
    return config


def _similarity(value: Any, key: str) -> float:
    number = float(value)
    if not 0.0 <= number <= 1.0:
        raise ValueError(f"'{key}' must be between 0 and 1, got {number}")
    return number


def _parse_embedding_config(raw: dict[str, Any]) -> AbstractEmbeddingConfig:
    provider_key = raw.get("provider", "openai")
    try:
        provider_type = EmbeddingProviderType(provider_key)
    except ValueError as exc:
        raise ValueError(f"Unknown embedding provider: {provider_key}") from exc

    model = raw.get("model", "")
    if not model:
        raise ValueError("Missing 'embedding.model' in chat config")

    dimensions = int(raw.get("dimensions", 1536))
    timeout_seconds = float(raw.get("timeout_seconds", 10))
    provider_raw = raw.get(provider_key, {})

    match provider_type:
        case EmbeddingProviderType.OPENAI:
            return OpenAIEmbeddingConfig.from_yaml(provider_raw, model, dimensions, timeout_seconds)
        case EmbeddingProviderType.BEDROCK:
            return BedrockEmbeddingConfig.from_yaml(
                provider_raw, model, dimensions, timeout_seconds
            )


def _parse_completion(
    raw: dict[str, Any] | None,
    defaults: CompletionSettings,
) -> CompletionSettings:
    if not raw:
        return defaults

    return CompletionSettings(
        model=raw.get("model") or defaults.model,
        max_tokens=int(raw.get("max_tokens", defaults.max_tokens)),
        temperature=float(raw.get("temperature", defaults.temperature)),
        timeout_seconds=float(raw.get("timeout_seconds", defaults.timeout_seconds)),
    )


def _parse_channels(raw: dict[str, Any]) -> dict[str, ChannelConfig]:
    channels: dict[str, ChannelConfig] = {}
    for name, channel_raw in raw.items():
        threshold = (channel_raw or {}).get("match_threshold")
        channels[name] = ChannelConfig(
            match_threshold=(
                _similarity(threshold, f"channels.{name}.match_threshold")
                if threshold is not None
                else None
            )
        )
    return channels
