from abc import ABC, abstractmethod
from typing import Sequence

from loguru import logger

from core.config import ConfigManager
from core.conversation import Message, Role
from llm.prompts import build_system_prompt


class ChatClient(ABC):
    """A stateful remote chat session.

    The session is owned by the client instance. ``send_message`` starts one
    implicitly, so callers never need to know whether it already exists.
    """

    model_role = "assistant"
    default_model = ""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

    @property
    def model(self) -> str:
        return self.config_manager.config.chat.model or self.default_model

    @property
    def system_prompt(self) -> str:
        tutor = self.config_manager.config.tutor
        return build_system_prompt(name=tutor.name, language=tutor.language)

    @abstractmethod
    def start_session(self, history: Sequence[Message]) -> None:
        """Establish or refresh the remote context.

        Raises:
            ConfigurationError: the credential is missing.
        """
        ...

    @abstractmethod
    async def send_message(self, text: str, history: Sequence[Message]) -> str:
        """Send one user turn and return the reply text.

        Args:
            text: The new user utterance.
            history: Prior turns, used only when no session exists yet.

        Raises:
            ConfigurationError: the credential is missing.
            ChatServiceError: any transport or model failure.
        """
        ...

    @property
    @abstractmethod
    def has_session(self) -> bool:
        ...

    @abstractmethod
    def reset(self) -> None:
        """Drop the session. The next call starts a fresh one."""
        ...

    def role_for(self, role: Role) -> str:
        return "user" if role == Role.USER else self.model_role


def create_chat_client(config_manager: ConfigManager) -> ChatClient:
    """Build the chat client for the configured provider."""
    name = config_manager.config.chat.provider

    if name == "gemini":
        from llm.providers.gemini_provider import GeminiChatClient
        client = GeminiChatClient(config_manager)
    elif name == "openai":
        from llm.providers.openai_provider import OpenAIChatClient
        client = OpenAIChatClient(config_manager)
    else:
        raise ValueError(f"Unknown chat provider: {name}")

    logger.info("Chat provider '{}' initialized ({}).", name, client.model)
    return client
