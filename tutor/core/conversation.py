from dataclasses import dataclass
from enum import Enum

from loguru import logger


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    role: Role
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "text": self.text}


class ConversationStore:
    """Append-only history of the current session.

    Insertion order is conversation order. Readers only ever get tuple
    snapshots, so a request built from a snapshot cannot see later turns.
    """

    def __init__(self):
        self._messages: list[Message] = []

    def append(self, role: Role, text: str) -> Message:
        message = Message(role=role, text=text)
        self._messages.append(message)
        logger.debug("[HISTORY] {} messages in conversation", len(self._messages))
        return message

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
