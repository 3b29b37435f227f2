from typing import Sequence

from loguru import logger

from core.conversation import Message
from core.errors import ChatServiceError
from llm.base import ChatClient


class GeminiChatClient(ChatClient):
    """Google Gemini chat session.

    The server-side context lives in a ``ChatSession``; it only records a
    turn once the reply has arrived, so a failed call leaves no trace.
    """

    model_role = "model"
    default_model = "gemini-2.5-flash"

    def __init__(self, config_manager):
        super().__init__(config_manager)
        self._model = None
        self._chat = None

    def _create_model(self, api_key: str):
        import google.generativeai as genai
        genai.configure(api_key=api_key)
        return genai.GenerativeModel(self.model, system_instruction=self.system_prompt)

    def _ensure_model(self):
        if self._model is None:
            self._model = self._create_model(self.config_manager.chat_api_key())
        return self._model

    def to_history(self, history: Sequence[Message]) -> list[dict]:
        """Convert messages to Gemini's ``{"role", "parts"}`` format."""
        return [
            {"role": self.role_for(msg.role), "parts": [msg.text]}
            for msg in history
        ]

    def start_session(self, history: Sequence[Message]) -> None:
        model = self._ensure_model()
        self._chat = model.start_chat(history=self.to_history(history))
        logger.info("Gemini chat session started with {} prior turns.", len(history))

    @property
    def has_session(self) -> bool:
        return self._chat is not None

    async def send_message(self, text: str, history: Sequence[Message]) -> str:
        if self._chat is None:
            self.start_session(history)

        try:
            response = await self._chat.send_message_async(text)
            reply = response.text
        except Exception as e:
            logger.error("Gemini chat error: {}", e)
            raise ChatServiceError(str(e) or "The chat service did not answer.") from e

        if not reply or not reply.strip():
            raise ChatServiceError("The chat service returned an empty reply.")
        return reply.strip()

    def reset(self) -> None:
        self._chat = None
        self._model = None
