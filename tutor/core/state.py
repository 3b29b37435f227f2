import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from loguru import logger

from core.errors import AssistantError


class AssistantStatus(str, Enum):
    IDLE = "idle"              # Waiting for the user
    LISTENING = "listening"    # Recognition session armed
    PROCESSING = "processing"  # Waiting for the chat service
    SPEAKING = "speaking"      # Reply being played back

    @property
    def message(self) -> str:
        return _STATUS_MESSAGES[self]


_STATUS_MESSAGES = {
    AssistantStatus.IDLE: "Click the mic to speak.",
    AssistantStatus.LISTENING: "Listening...",
    AssistantStatus.PROCESSING: "Thinking...",
    AssistantStatus.SPEAKING: "Speaking...",
}


class Trigger(str, Enum):
    LISTEN = "listen"                        # User toggles the mic on
    AUDIO_START = "audio_start"              # Engine began capturing
    FINAL_TRANSCRIPT = "final_transcript"    # Non-empty final result
    EMPTY_TRANSCRIPT = "empty_transcript"    # Final result blank after trim
    RECOGNITION_END = "recognition_end"      # Session ended with no result
    RECOGNITION_ERROR = "recognition_error"
    OPEN = "open"                            # Opening line requested
    REPLY = "reply"                          # Chat service answered
    CHAT_FAILED = "chat_failed"
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"
    SPEECH_ERROR = "speech_error"
    MIC_DENIED = "mic_denied"                # Engine refused to start
    RESET = "reset"                          # Session torn down by the user


_S = AssistantStatus
TRANSITIONS: dict[tuple[AssistantStatus, Trigger], AssistantStatus] = {
    (_S.IDLE, Trigger.LISTEN): _S.LISTENING,
    (_S.SPEAKING, Trigger.LISTEN): _S.LISTENING,
    (_S.LISTENING, Trigger.AUDIO_START): _S.LISTENING,
    (_S.LISTENING, Trigger.FINAL_TRANSCRIPT): _S.PROCESSING,
    (_S.LISTENING, Trigger.EMPTY_TRANSCRIPT): _S.IDLE,
    (_S.LISTENING, Trigger.RECOGNITION_END): _S.IDLE,
    (_S.LISTENING, Trigger.RECOGNITION_ERROR): _S.IDLE,
    (_S.IDLE, Trigger.OPEN): _S.PROCESSING,
    (_S.PROCESSING, Trigger.REPLY): _S.SPEAKING,
    (_S.PROCESSING, Trigger.CHAT_FAILED): _S.IDLE,
    (_S.SPEAKING, Trigger.SPEECH_START): _S.SPEAKING,
    (_S.SPEAKING, Trigger.SPEECH_END): _S.LISTENING,
    (_S.SPEAKING, Trigger.SPEECH_ERROR): _S.IDLE,
    (_S.IDLE, Trigger.MIC_DENIED): _S.IDLE,
    (_S.SPEAKING, Trigger.MIC_DENIED): _S.IDLE,
    **{(status, Trigger.RESET): _S.IDLE for status in AssistantStatus},
}


@dataclass
class SharedState:
    """State observed by the HTTP layer and mutated only by the orchestrator."""

    status: AssistantStatus = AssistantStatus.IDLE
    error: Optional[AssistantError] = None
    is_supported: bool = True

    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    def can_fire(self, trigger: Trigger) -> bool:
        return (self.status, trigger) in TRANSITIONS

    def fire(self, trigger: Trigger) -> bool:
        """Apply a trigger. Returns False (and leaves status alone) if illegal."""
        target = TRANSITIONS.get((self.status, trigger))
        if target is None:
            logger.debug("Ignoring {} while {}", trigger.value, self.status.value)
            return False
        if target != self.status:
            logger.debug("Status {} -> {} ({})", self.status.value, target.value, trigger.value)
        self.status = target
        return True

    def set_error(self, error: AssistantError) -> None:
        # A configuration error outlives everything but an explicit fix.
        if self.error is not None and self.error.blocks_start:
            return
        self.error = error

    def clear_error(self) -> None:
        if self.error is not None and self.error.blocks_start:
            return
        self.error = None

    def request_stop(self) -> None:
        self.stop_event.set()

    @property
    def is_running(self) -> bool:
        return not self.stop_event.is_set()

    @property
    def start_blocked(self) -> bool:
        """No lesson can start: speech is unsupported or a configuration error is active."""
        return not self.is_supported or (self.error is not None and self.error.blocks_start)

    @property
    def can_start(self) -> bool:
        return not self.start_blocked and self.status != AssistantStatus.PROCESSING
