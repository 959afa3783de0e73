import threading
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field

from stashchat.chat.orchestrator import RetrievalOrchestrator
from stashchat.chat.types import ChatRequest, ChatResult, ConversationTurn

_logger = structlog.get_logger()

CHANNEL = "web"


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class WebChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    message: str = Field(min_length=1)
    conversation_history: list[HistoryTurn] = Field(
        default_factory=list, alias="conversationHistory"
    )

    def to_chat_request(self, user_id: str) -> ChatRequest:
        return ChatRequest(
            message=self.message,
            user_id=user_id,
            conversation_history=tuple(
                ConversationTurn(role=turn.role, content=turn.content)
                for turn in self.conversation_history
            ),
            channel=CHANNEL,
        )


class WebSource(BaseModel):
    id: str
    title: str
    type: str
    url: str | None = None


class WebChatResponse(BaseModel):
    response: str
    sources: list[WebSource]

    @classmethod
    def from_result(cls, result: ChatResult) -> "WebChatResponse":
        return cls(
            response=result.response,
            sources=[
                WebSource(id=s.id, title=s.title, type=s.type, url=s.url) for s in result.sources
            ],
        )


def handle_web_chat(
    payload: dict[str, Any],
    user_id: str,
    orchestrator: RetrievalOrchestrator,
    cancel_event: threading.Event | None = None,
) -> dict[str, Any]:
    """Translate a web chat JSON body into a chat run and back.

    Raises ``pydantic.ValidationError`` for malformed payloads.
    """
    request = WebChatRequest.model_validate(payload)
    result = orchestrator.chat(request.to_chat_request(user_id), cancel_event=cancel_event)
    _logger.debug("web_chat_answered", sources=len(result.sources), path=result.path.value)
    return WebChatResponse.from_result(result).model_dump(exclude_none=True)
