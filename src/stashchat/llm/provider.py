from abc import ABC, abstractmethod

from stashchat.llm.config import AbstractProviderConfig
from stashchat.llm.types import CompletionSettings, Message, ProviderType, TextResponse


class AbstractChatProvider(ABC):
    def __init__(self, config: AbstractProviderConfig) -> None:
        self.config = config

    @abstractmethod
    def identify(self) -> ProviderType: ...

    @abstractmethod
    def complete(self, messages: list[Message], settings: CompletionSettings) -> TextResponse:
        """
        Run one chat completion.

        Args:
            messages: System, history and user messages in order
            settings: Model, output budget, temperature and timeout for this call

        Returns:
            TextResponse with the stripped model output (may be empty)

        Raises:
            ProviderError: transport failure, timeout, non-success status or
                a payload without a first choice
        """
        ...
