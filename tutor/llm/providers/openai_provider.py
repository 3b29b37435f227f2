from typing import Optional, Sequence

from loguru import logger

from core.conversation import Message
from core.errors import ChatServiceError
from llm.base import ChatClient


class OpenAIChatClient(ChatClient):
    """OpenAI chat completions behind the session interface.

    The API is stateless, so the session is the message list kept here.
    """

    default_model = "gpt-4o-mini"

    def __init__(self, config_manager):
        super().__init__(config_manager)
        self.api_key = ""
        self._client = None
        self._messages: Optional[list[dict]] = None

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self.api_key = self.config_manager.chat_api_key()
            self._client = AsyncOpenAI(api_key=self.api_key)

    def start_session(self, history: Sequence[Message]) -> None:
        self._ensure_client()
        self._messages = [{"role": "system", "content": self.system_prompt}]
        self._messages.extend(
            {"role": self.role_for(msg.role), "content": msg.text} for msg in history
        )
        logger.info("OpenAI chat session started with {} prior turns.", len(history))

    @property
    def has_session(self) -> bool:
        return self._messages is not None

    async def send_message(self, text: str, history: Sequence[Message]) -> str:
        if self._messages is None:
            self.start_session(history)

        user_msg = {"role": "user", "content": text}
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[*self._messages, user_msg],
                temperature=0.7,
            )
            reply = response.choices[0].message.content if response.choices else None
        except Exception as e:
            logger.error("OpenAI chat error: {}", e)
            raise ChatServiceError(str(e) or "The chat service did not answer.") from e

        if not reply or not reply.strip():
            raise ChatServiceError("The chat service returned an empty reply.")

        reply = reply.strip()
        self._messages.append(user_msg)
        self._messages.append({"role": "assistant", "content": reply})
        return reply

    def reset(self) -> None:
        self._messages = None
