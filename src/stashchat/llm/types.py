from dataclasses import dataclass
from enum import StrEnum


class ProviderType(StrEnum):
    OPENAI = "openai"
    BEDROCK = "bedrock"


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    role: MessageRole
    content: str


@dataclass(frozen=True)
class CompletionSettings:
    """Per-call model parameters; the relevance judge and the answer model differ."""

    model: str
    max_tokens: int
    temperature: float
    timeout_seconds: float


@dataclass
class TokenUsage:
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class TextResponse:
    content: str
    usage: TokenUsage


class ProviderError(Exception):
    """A chat-completion call failed or returned an unusable payload."""
