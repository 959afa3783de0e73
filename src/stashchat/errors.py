class ChatError(Exception):
    """Base class for failures raised inside the chat pipeline."""


class EmbeddingUnavailable(ChatError):
    """The query embedding could not be produced (network, API, timeout or bad payload)."""


class RetrievalEmpty(ChatError):
    """Vector search produced no qualifying chunks, or the query itself failed."""


class GenerationFailure(ChatError):
    """The answer model failed or returned no content. Terminal for the request."""


class ChatCancelled(ChatError):
    """The caller aborted the request before it finished."""
