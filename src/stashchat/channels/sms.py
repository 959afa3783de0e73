import structlog

from stashchat.chat.orchestrator import RetrievalOrchestrator
from stashchat.chat.types import ChatRequest, ChatResult

_logger = structlog.get_logger()

CHANNEL = "sms"

# Twilio rejects message bodies longer than this
SMS_MAX_CHARS = 1600

EMPTY_QUESTION_REPLY = (
    "Ask me anything about what you've saved, e.g. \"what did I save about meetings?\""
)


def render_sms_reply(result: ChatResult, max_chars: int = SMS_MAX_CHARS) -> str:
    """Plain-text reply: the answer, then the cited item titles."""
    footer = ""
    if result.sources:
        footer = "\n\nSources:\n" + "\n".join(f"- {source.title}" for source in result.sources)

    answer = result.response.strip()
    budget = max_chars - len(footer)
    if len(answer) > budget:
        answer = answer[: max(budget - 3, 0)].rstrip() + "..."
    return (answer + footer)[:max_chars]


def handle_sms_question(body: str, user_id: str, orchestrator: RetrievalOrchestrator) -> str:
    """Answer an inbound SMS/WhatsApp question. Each message is a fresh conversation."""
    question = body.strip()
    if not question:
        return EMPTY_QUESTION_REPLY

    result = orchestrator.chat(ChatRequest(message=question, user_id=user_id, channel=CHANNEL))
    reply = render_sms_reply(result)
    _logger.info(
        "sms_question_answered",
        path=result.path.value,
        sources=len(result.sources),
        reply_chars=len(reply),
    )
    return reply
