import asyncio
from typing import Callable, Optional

from loguru import logger

from audio.audio_capture import AudioCapture, MicrophoneDeniedError
from audio.engines import (
    AUDIO_CAPTURE,
    NETWORK,
    NO_SPEECH,
    NOT_ALLOWED,
    EnginePermissionError,
    EngineStateError,
    RecognitionEngine,
    RecognitionEvent,
    RecognitionResult,
)
from audio.stt import CloudSpeechToText
from audio.synthesizer import SpeechOutputController
from audio.vad import EnergyVAD
from core.errors import MicrophonePermissionError


class CloudRecognitionEngine(RecognitionEngine):
    """Records one utterance, then transcribes it with the cloud STT.

    The microphone is opened per session and released on every exit path,
    including abort while the device is still opening. A new session waits
    until an aborted one has let go of the device. Only a final result is
    ever published.
    """

    def __init__(
        self,
        stt: CloudSpeechToText,
        vad: EnergyVAD,
        language: str = "en-US",
        initial_wait: float = 5.0,
        capture_factory: Callable[[], AudioCapture] = AudioCapture,
    ):
        super().__init__(language)
        self.stt = stt
        self.vad = vad
        self.initial_wait = initial_wait
        self._capture_factory = capture_factory
        self._task: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Task] = None
        self._stop_requested = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            raise EngineStateError("recognition has already started")
        self._stop_requested = False
        previous, self._closing = self._closing, None
        self._task = asyncio.get_running_loop().create_task(self._run(previous))

    def stop(self) -> None:
        self._stop_requested = True

    def abort(self) -> None:
        self._stop_requested = True
        if self.active:
            self._task.cancel()
            self._closing = self._task
            logger.debug("Recognition session aborted.")
        self._task = None

    async def _run(self, previous: Optional[asyncio.Task] = None) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        loop = asyncio.get_running_loop()
        capture = self._capture_factory()
        pending: Optional[asyncio.Future] = None
        try:
            pending = loop.run_in_executor(None, capture.open)
            await asyncio.shield(pending)
            self._emit("on_audio_start")
            audio = await self.vad.capture_until_silence(
                capture,
                initial_wait=self.initial_wait,
                should_stop=lambda: self._stop_requested,
            )
            await loop.run_in_executor(None, capture.close)

            if audio is None:
                if not self._stop_requested:
                    self._emit("on_error", NO_SPEECH)
            else:
                self.stt.language = self.language
                text = await self.stt.transcribe(audio)
                if text:
                    result = RecognitionResult(alternatives=(text,), is_final=True)
                    self._emit("on_result", RecognitionEvent(results=(result,)))
        except MicrophoneDeniedError as e:
            logger.error("Microphone access denied: {}", e)
            self._emit("on_error", NOT_ALLOWED)
        except OSError as e:
            logger.error("Audio capture failed: {}", e)
            self._emit("on_error", AUDIO_CAPTURE)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Transcription failed: {}", e)
            self._emit("on_error", NETWORK)
        finally:
            # An open still running in its thread would reopen a closed device
            if pending is not None and not pending.done():
                await asyncio.wait({pending})
            await loop.run_in_executor(None, capture.close)

        if self._task is asyncio.current_task():
            self._task = None
        self._emit("on_end")


class SpeechInputController:
    """Turns recognition engine callbacks into transcript events.

    Holds the interim transcript, which is overwritten on every partial
    result and cleared when a session starts or ends.
    """

    is_supported = True

    def __init__(
        self,
        engine: Optional[RecognitionEngine],
        speech_output: SpeechOutputController,
        language: str = "en-US",
    ):
        self.engine = engine
        self.speech_output = speech_output
        self.transcript = ""

        self._on_audio_start: Callable[[], None] = lambda: None
        self._on_final: Callable[[str], None] = lambda text: None
        self._on_end: Callable[[], None] = lambda: None
        self._on_error: Callable[[str], None] = lambda code: None
        self._is_listening: Callable[[], bool] = lambda: False

        if engine is not None:
            engine.language = language
            engine.interim_results = True
            engine.continuous = False
            engine.on_audio_start = self._handle_audio_start
            engine.on_result = self._handle_result
            engine.on_end = self._handle_end
            engine.on_error = self._handle_error

    def bind(
        self,
        on_audio_start: Callable[[], None],
        on_final: Callable[[str], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
        is_listening: Callable[[], bool],
    ) -> None:
        self._on_audio_start = on_audio_start
        self._on_final = on_final
        self._on_end = on_end
        self._on_error = on_error
        self._is_listening = is_listening

    def start(self) -> None:
        """Arm the engine, silencing any speech output first.

        Raises:
            MicrophonePermissionError: the engine refused to start.
        """
        self.speech_output.cancel()
        self.transcript = ""
        try:
            self.engine.start()
        except EngineStateError:
            logger.debug("Recognition already started.")
        except EnginePermissionError as e:
            logger.error("Error starting recognition: {}", e)
            raise MicrophonePermissionError("Microphone permission has not been granted.") from e

    def stop(self) -> None:
        """Graceful stop; a pending final result still arrives."""
        self.engine.stop()

    def close(self) -> None:
        """Abort the session and silence output, whatever happens."""
        try:
            if self.engine is not None:
                self.engine.abort()
        finally:
            self.speech_output.cancel()
            self.transcript = ""

    def _handle_audio_start(self) -> None:
        self.transcript = ""
        self._on_audio_start()

    def _handle_result(self, event: RecognitionEvent) -> None:
        interim = ""
        final = ""
        for result in event.results[event.result_index:]:
            if result.is_final:
                final += result.transcript
            else:
                interim += result.transcript

        self.transcript = interim
        if final:
            self._on_final(final.strip())

    def _handle_end(self) -> None:
        self.transcript = ""
        if self._is_listening():
            self._on_end()

    def _handle_error(self, code: str) -> None:
        self._on_error(code)


class UnsupportedSpeechInput(SpeechInputController):
    """Used when no recognition engine is available."""

    is_supported = False

    def __init__(self, speech_output: SpeechOutputController, language: str = "en-US"):
        super().__init__(engine=None, speech_output=speech_output, language=language)

    def start(self) -> None:
        logger.warning("Voice recognition is not supported on this device.")

    def stop(self) -> None:
        pass
