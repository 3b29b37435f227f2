"""Fake engines and chat client for exercising the orchestrator without hardware."""
import asyncio

import pytest

from audio.engines import (
    EnginePermissionError,
    EngineStateError,
    RecognitionEngine,
    RecognitionEvent,
    RecognitionResult,
    SynthesisEngine,
)
from audio.recognizer import SpeechInputController
from audio.synthesizer import SpeechOutputController
from core.config import ConfigManager
from core.errors import ChatServiceError
from core.main import Orchestrator


class FakeRecognitionEngine(RecognitionEngine):
    def __init__(self):
        super().__init__()
        self.active = False
        self.start_calls = 0
        self.stop_calls = 0
        self.abort_calls = 0
        self.deny_permission = False

    def start(self):
        self.start_calls += 1
        if self.deny_permission:
            raise EnginePermissionError("NotAllowedError")
        if self.active:
            raise EngineStateError("already started")
        self.active = True

    def stop(self):
        self.stop_calls += 1

    def abort(self):
        self.abort_calls += 1
        self.active = False

    # Helpers that play the engine's side of a session
    def audio_start(self):
        self._emit("on_audio_start")

    def interim(self, *texts):
        results = tuple(RecognitionResult(alternatives=(t,)) for t in texts)
        self._emit("on_result", RecognitionEvent(results=results))

    def final(self, text):
        result = RecognitionResult(alternatives=(text,), is_final=True)
        self._emit("on_result", RecognitionEvent(results=(result,)))

    def end(self):
        self.active = False
        self._emit("on_end")

    def error(self, code):
        self.active = False
        self._emit("on_error", code)
        self._emit("on_end")


class FakeSynthesisEngine(SynthesisEngine):
    def __init__(self):
        self.spoken = []
        self.current = None
        self.cancel_calls = 0

    @property
    def speaking(self):
        return self.current is not None

    def speak(self, utterance):
        assert self.current is None, "two utterances audible at once"
        self.spoken.append(utterance.text)
        self.current = utterance

    def cancel(self):
        self.cancel_calls += 1
        utterance, self.current = self.current, None
        if utterance is not None:
            utterance.emit("on_error", "interrupted")

    def begin(self):
        self.current.emit("on_start")

    def finish(self):
        utterance, self.current = self.current, None
        utterance.emit("on_end")

    def fail(self, code="synthesis-failed"):
        utterance, self.current = self.current, None
        utterance.emit("on_error", code)


class FakeChatClient:
    def __init__(self):
        self.replies = []
        self.calls = []
        self.session_starts = 0
        self.resets = 0
        self.gate = None
        self.start_error = None

    def start_session(self, history):
        if self.start_error is not None:
            raise self.start_error
        self.session_starts += 1

    @property
    def has_session(self):
        return self.session_starts > 0

    async def send_message(self, text, history):
        self.calls.append((text, tuple(history)))
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else "Tell me more!"
        if isinstance(reply, Exception):
            raise reply
        return reply

    def reset(self):
        self.resets += 1


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(tmp_path)


@pytest.fixture
def recognition_engine():
    return FakeRecognitionEngine()


@pytest.fixture
def synthesis_engine():
    return FakeSynthesisEngine()


@pytest.fixture
def chat():
    return FakeChatClient()


@pytest.fixture
def orchestrator(config_manager, chat, recognition_engine, synthesis_engine):
    speech_output = SpeechOutputController(synthesis_engine)
    speech_input = SpeechInputController(recognition_engine, speech_output)
    return Orchestrator(
        config_manager=config_manager,
        chat_client=chat,
        speech_input=speech_input,
        speech_output=speech_output,
    )


@pytest.fixture
def network_error():
    return ChatServiceError("503 Service Unavailable")


@pytest.fixture
def drain(orchestrator):
    """Await every task the orchestrator has spawned."""
    async def _drain():
        while True:
            pending = [t for t in orchestrator._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)
    return _drain
