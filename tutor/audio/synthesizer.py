import asyncio
from typing import Callable, Optional

from loguru import logger

from audio.audio_player import AudioPlayer
from audio.engines import CANCELLED_CODES, SynthesisEngine, Utterance
from audio.tts import CloudTextToSpeech


class CloudSynthesisEngine(SynthesisEngine):
    """Synthesizes through the cloud TTS and plays locally, one utterance at a time."""

    def __init__(self, tts: CloudTextToSpeech, player: AudioPlayer):
        self.tts = tts
        self.player = player
        self._task: Optional[asyncio.Task] = None

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, utterance: Utterance) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(utterance))

    async def _run(self, utterance: Utterance) -> None:
        try:
            audio = await self.tts.synthesize(utterance.text)
            utterance.emit("on_start")
            await self.player.play(audio)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Speech synthesis error: {}", e)
            utterance.emit("on_error", "synthesis-failed")
            return
        utterance.emit("on_end")

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Cancelled in-flight utterance.")
        self._task = None
        self.player.stop()


class SpeechOutputController:
    """Speaks assistant replies and reports their lifecycle.

    At most one utterance is current. Events from an utterance that has
    since been cancelled or replaced are dropped.
    """

    is_supported = True

    def __init__(self, engine: Optional[SynthesisEngine], language: str = "en-US"):
        self.engine = engine
        self.language = language
        self._current: Optional[Utterance] = None
        self._on_start: Callable[[], None] = lambda: None
        self._on_end: Callable[[], None] = lambda: None
        self._on_error: Callable[[str], None] = lambda code: None

    def bind(
        self,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        self._on_start = on_start
        self._on_end = on_end
        self._on_error = on_error

    @property
    def active(self) -> bool:
        return self._current is not None

    def speak(self, text: str) -> None:
        self.cancel()

        utterance = Utterance(text=text, language=self.language)
        utterance.on_start = lambda: self._handle_start(utterance)
        utterance.on_end = lambda: self._handle_end(utterance)
        utterance.on_error = lambda code: self._handle_error(utterance, code)

        self._current = utterance
        self.engine.speak(utterance)

    def cancel(self) -> None:
        self._current = None
        self.engine.cancel()

    def _handle_start(self, utterance: Utterance) -> None:
        if utterance is self._current:
            self._on_start()

    def _handle_end(self, utterance: Utterance) -> None:
        if utterance is not self._current:
            return
        self._current = None
        self._on_end()

    def _handle_error(self, utterance: Utterance, code: str) -> None:
        if utterance is not self._current or code in CANCELLED_CODES:
            return
        self._current = None
        logger.error("SpeechSynthesis error: {}", code)
        self._on_error(code)


class UnsupportedSpeechOutput(SpeechOutputController):
    """Used when no synthesis engine is available. Every reply fails to play."""

    is_supported = False

    def __init__(self, language: str = "en-US"):
        super().__init__(engine=None, language=language)

    def speak(self, text: str) -> None:
        logger.warning("Speech output unavailable; reply not spoken.")
        self._on_error("not-supported")

    def cancel(self) -> None:
        self._current = None
