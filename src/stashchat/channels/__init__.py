from stashchat.channels.sms import handle_sms_question, render_sms_reply
from stashchat.channels.web import WebChatRequest, WebChatResponse, handle_web_chat

__all__ = [
    "WebChatRequest",
    "WebChatResponse",
    "handle_sms_question",
    "handle_web_chat",
    "render_sms_reply",
]
