from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"  # Missing credential, fatal for this run
    PERMISSION = "permission"        # Microphone access denied
    RECOGNITION = "recognition"      # Speech recognition engine failure
    NETWORK = "network"              # Chat service call failed
    SYNTHESIS = "synthesis"          # Speech playback failed


class TutorError(Exception):
    """Base class for all classified tutor failures."""

    kind: ErrorKind = ErrorKind.RECOGNITION


class ConfigurationError(TutorError):
    kind = ErrorKind.CONFIGURATION


class MicrophonePermissionError(TutorError):
    kind = ErrorKind.PERMISSION


class RecognitionError(TutorError):
    kind = ErrorKind.RECOGNITION


class ChatServiceError(TutorError):
    kind = ErrorKind.NETWORK


class SynthesisError(TutorError):
    kind = ErrorKind.SYNTHESIS


_SUMMARIES = {
    ErrorKind.CONFIGURATION: "Configuration Error: API key not found.",
    ErrorKind.PERMISSION: "Error: Microphone permission denied.",
    ErrorKind.RECOGNITION: "Error: Speech recognition failed.",
    ErrorKind.NETWORK: "Connection Error: Please try again.",
    ErrorKind.SYNTHESIS: "Error: Could not speak the response.",
}


@dataclass(frozen=True)
class AssistantError:
    """The single active error shown to the user."""

    kind: ErrorKind
    message: str

    @classmethod
    def from_exception(cls, exc: TutorError) -> "AssistantError":
        return cls(kind=exc.kind, message=str(exc) or exc.__class__.__name__)

    @property
    def summary(self) -> str:
        """Short footer text for the presentation layer."""
        return _SUMMARIES[self.kind]

    @property
    def blocks_start(self) -> bool:
        return self.kind == ErrorKind.CONFIGURATION

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "summary": self.summary}
