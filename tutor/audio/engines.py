from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional


class EngineStateError(RuntimeError):
    """Raised by ``start()`` when a recognition session is already active."""


class EnginePermissionError(RuntimeError):
    """Raised by ``start()`` when the microphone cannot be used at all."""


# Recognition error codes delivered through ``on_error``
NO_SPEECH = "no-speech"
AUDIO_CAPTURE = "audio-capture"
NOT_ALLOWED = "not-allowed"
NETWORK = "network"

# Synthesis error codes that only mean "you cancelled me"
CANCELLED_CODES = frozenset({"interrupted", "canceled"})


@dataclass(frozen=True)
class RecognitionResult:
    alternatives: tuple[str, ...]
    is_final: bool = False

    @property
    def transcript(self) -> str:
        return self.alternatives[0] if self.alternatives else ""


@dataclass(frozen=True)
class RecognitionEvent:
    """Engines republish every result of the session on each event.

    ``result_index`` is the first result that changed since the last event.
    """

    results: tuple[RecognitionResult, ...]
    result_index: int = 0


class RecognitionEngine(ABC):
    """Single-utterance speech recognizer driven by callbacks.

    Callbacks are invoked on the event loop thread.
    """

    def __init__(self, language: str = "en-US"):
        self.language = language
        self.interim_results = True
        self.continuous = False

        self.on_audio_start: Optional[Callable[[], None]] = None
        self.on_result: Optional[Callable[[RecognitionEvent], None]] = None
        self.on_end: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

    @abstractmethod
    def start(self) -> None:
        """Begin a session.

        Raises:
            EngineStateError: a session is already running.
            EnginePermissionError: microphone access is denied.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """End capture but still deliver a pending final result."""
        ...

    @abstractmethod
    def abort(self) -> None:
        """End the session and discard anything pending."""
        ...

    def _emit(self, name: str, *args) -> None:
        callback = getattr(self, name)
        if callback is not None:
            callback(*args)


@dataclass
class Utterance:
    text: str
    language: str = "en-US"

    on_start: Optional[Callable[[], None]] = field(default=None, repr=False)
    on_end: Optional[Callable[[], None]] = field(default=None, repr=False)
    on_error: Optional[Callable[[str], None]] = field(default=None, repr=False)

    def emit(self, name: str, *args) -> None:
        callback = getattr(self, name)
        if callback is not None:
            callback(*args)


class SynthesisEngine(ABC):
    """Speaks utterances and reports lifecycle through the utterance."""

    @abstractmethod
    def speak(self, utterance: Utterance) -> None:
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Silence everything queued or playing."""
        ...

    @property
    @abstractmethod
    def speaking(self) -> bool:
        ...
