import asyncio
import importlib.util
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from core.config import ConfigManager
from core.conversation import ConversationStore, Message, Role
from core.errors import (
    AssistantError,
    ChatServiceError,
    ConfigurationError,
    MicrophonePermissionError,
    RecognitionError,
    SynthesisError,
    TutorError,
)
from core.state import AssistantStatus, SharedState, Trigger

# Base directory for the tutor package
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"

# Recognition codes that just mean "nothing was said"
BENIGN_RECOGNITION_CODES = frozenset({"no-speech", "audio-capture"})


def build_speech_io(config_manager: ConfigManager):
    """Pick supported or unsupported speech controllers for this machine.

    Speech needs PyAudio for the microphone and a credential for the cloud
    speech API; without either, both directions are unsupported.
    """
    from audio.recognizer import SpeechInputController, UnsupportedSpeechInput
    from audio.synthesizer import SpeechOutputController, UnsupportedSpeechOutput

    config = config_manager.config
    language = config.tutor.language
    api_key = config_manager.speech_api_key()
    has_pyaudio = importlib.util.find_spec("pyaudio") is not None

    if not api_key or not has_pyaudio:
        logger.warning(
            "Speech unavailable (pyaudio installed: {}, {} set: {}).",
            has_pyaudio, config.speech.api_key_env, bool(api_key),
        )
        speech_output = UnsupportedSpeechOutput(language=language)
        return UnsupportedSpeechInput(speech_output, language=language), speech_output

    from audio.audio_player import AudioPlayer
    from audio.recognizer import CloudRecognitionEngine
    from audio.stt import CloudSpeechToText
    from audio.synthesizer import CloudSynthesisEngine
    from audio.tts import CloudTextToSpeech
    from audio.vad import EnergyVAD

    speech = config.speech
    tts = CloudTextToSpeech(api_key=api_key, model=speech.tts_model, voice=speech.voice)
    speech_output = SpeechOutputController(
        CloudSynthesisEngine(tts, AudioPlayer()), language=language
    )

    stt = CloudSpeechToText(api_key=api_key, model=speech.stt_model, language=language)
    vad = EnergyVAD(
        silence_duration=speech.silence_duration,
        max_duration=speech.max_duration,
        speech_threshold=speech.speech_rms_threshold,
    )
    engine = CloudRecognitionEngine(
        stt, vad, language=language, initial_wait=speech.initial_wait
    )
    speech_input = SpeechInputController(engine, speech_output, language=language)
    logger.info("Speech ready: STT={}, TTS={} ({}).", speech.stt_model, speech.tts_model, speech.voice)
    return speech_input, speech_output


class Orchestrator:
    """Conversation orchestrator: the single status state machine.

    Every engine callback and network outcome is turned into a ``Trigger``
    and applied through ``SharedState.fire``. A trigger that is not legal
    in the current status is dropped, which is what keeps the three engines
    from overlapping.
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        chat_client=None,
        speech_input=None,
        speech_output=None,
    ):
        self.config_manager = config_manager or ConfigManager(DATA_DIR)
        self.state = SharedState()
        self.store = ConversationStore()

        if chat_client is None:
            from llm.base import create_chat_client
            chat_client = create_chat_client(self.config_manager)
        self.chat = chat_client

        if speech_input is None or speech_output is None:
            speech_input, speech_output = build_speech_io(self.config_manager)
        self.speech_input = speech_input
        self.speech_output = speech_output

        self.speech_input.bind(
            on_audio_start=self._on_audio_start,
            on_final=self.process_speech,
            on_end=self._on_recognition_end,
            on_error=self._on_recognition_error,
            is_listening=lambda: self.state.status == AssistantStatus.LISTENING,
        )
        self.speech_output.bind(
            on_start=self._on_speech_start,
            on_end=self._on_speech_end,
            on_error=self._on_speech_error,
        )
        self.state.is_supported = self.speech_input.is_supported and self.speech_output.is_supported

        self._tasks: set[asyncio.Task] = set()
        self._api_server = None
        self._server_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # Presentation surface
    # ------------------------------------------------------------------ #
    @property
    def status(self) -> AssistantStatus:
        return self.state.status

    @property
    def conversation(self) -> tuple[Message, ...]:
        return self.store.snapshot()

    @property
    def current_transcript(self) -> str:
        return self.speech_input.transcript

    @property
    def error(self) -> Optional[AssistantError]:
        return self.state.error

    @property
    def is_supported(self) -> bool:
        return self.state.is_supported

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #
    async def start_conversation(self) -> None:
        """Ask the chat service for the opening line and speak it.

        No-op once the conversation has any message, while another call is
        in flight, or while a configuration error is active.
        """
        if len(self.store) > 0:
            logger.debug("Conversation already started.")
            return
        if self.state.error is not None and self.state.error.blocks_start:
            logger.warning("Cannot start lesson: {}", self.state.error.summary)
            return
        if not self.state.fire(Trigger.OPEN):
            return

        self.state.clear_error()
        from llm.prompts import build_opening_prompt
        opening = build_opening_prompt(self.config_manager.config.tutor.name)
        logger.info("Starting lesson.")
        task = self._spawn(self._converse(opening, ()))
        await asyncio.wait({task})

    def toggle_listening(self) -> None:
        """Stop listening if listening, otherwise (re)arm the microphone."""
        if self.state.status == AssistantStatus.LISTENING:
            logger.debug("Stopping recognition at user request.")
            self.speech_input.stop()
        else:
            self._arm(Trigger.LISTEN)

    def process_speech(self, text: str) -> Optional[asyncio.Task]:
        """Accept a final transcript and send it to the chat service.

        The history snapshot is taken here, before the user message is
        appended, so the request never sees later turns.
        """
        text = text.strip()
        if not text:
            self.state.fire(Trigger.EMPTY_TRANSCRIPT)
            return None
        if not self.state.fire(Trigger.FINAL_TRANSCRIPT):
            logger.warning("Dropping transcript received while {}", self.state.status.value)
            return None

        history = self.store.snapshot()
        self.store.append(Role.USER, text)
        self.state.clear_error()
        logger.info("User said: '{}'", text)
        return self._spawn(self._converse(text, history))

    def reset(self) -> None:
        """Tear down the session: silence everything and forget the history."""
        for task in list(self._tasks):
            task.cancel()
        self.speech_input.close()
        self.chat.reset()
        self.store = ConversationStore()
        self.state.fire(Trigger.RESET)
        self.state.clear_error()
        logger.info("Conversation reset.")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _fail(self, exc: TutorError) -> None:
        self.state.set_error(AssistantError.from_exception(exc))

    def _arm(self, trigger: Trigger) -> None:
        """Start a recognition session, then apply ``trigger``."""
        if not self.state.is_supported:
            logger.warning("Voice recognition is not supported on this device.")
            return
        if not self.state.can_fire(trigger):
            logger.debug("Not arming microphone while {}", self.state.status.value)
            return
        try:
            self.speech_input.start()
        except MicrophonePermissionError as e:
            self._fail(e)
            self.state.fire(Trigger.MIC_DENIED)
            return
        self.state.fire(trigger)

    async def _converse(self, text: str, history: Sequence[Message]) -> None:
        timeout = self.config_manager.config.chat.timeout_seconds
        try:
            reply = await asyncio.wait_for(self.chat.send_message(text, history), timeout)
        except asyncio.TimeoutError:
            logger.error("Chat service timed out after {:.0f}s", timeout)
            self._fail(ChatServiceError(f"The tutor did not answer within {timeout:.0f} seconds."))
            self.state.fire(Trigger.CHAT_FAILED)
            return
        except TutorError as e:
            logger.error("Error processing speech: {}", e)
            self._fail(e)
            self.state.fire(Trigger.CHAT_FAILED)
            return
        except Exception as e:
            logger.exception("Unexpected chat failure")
            self._fail(ChatServiceError(str(e) or "An unknown error occurred while processing your request."))
            self.state.fire(Trigger.CHAT_FAILED)
            return

        if not self.state.fire(Trigger.REPLY):
            return
        self.store.append(Role.ASSISTANT, reply)
        logger.info("Tutor replied: '{}'", reply)
        self.speech_output.speak(reply)

    def _on_audio_start(self) -> None:
        if self.state.fire(Trigger.AUDIO_START):
            self.state.clear_error()

    def _on_recognition_end(self) -> None:
        self.state.fire(Trigger.RECOGNITION_END)

    def _on_recognition_error(self, code: str) -> None:
        if not self.state.fire(Trigger.RECOGNITION_ERROR):
            return
        if code in BENIGN_RECOGNITION_CODES:
            logger.debug("Recognition ended without speech ({}).", code)
        elif code == "not-allowed":
            self._fail(MicrophonePermissionError("Microphone permission is not granted."))
        else:
            self._fail(RecognitionError(f"Speech Recognition Error: {code}"))

    def _on_speech_start(self) -> None:
        self.state.fire(Trigger.SPEECH_START)

    def _on_speech_end(self) -> None:
        # Re-arming here is what keeps the conversation going hands-free.
        self._arm(Trigger.SPEECH_END)

    def _on_speech_error(self, code: str) -> None:
        if self.state.fire(Trigger.SPEECH_ERROR):
            logger.error("SpeechSynthesis error: {}", code)
            self._fail(SynthesisError("Sorry, I couldn't speak the response."))

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def check_configuration(self) -> bool:
        """Open the chat session up front so a missing key blocks the lesson."""
        try:
            self.chat.start_session(())
        except ConfigurationError as e:
            logger.error("Initial chat session failed: {}", e)
            self._fail(e)
            return False
        return True

    async def start(self):
        """Boot sequence: validate config, start the API, wait for shutdown."""
        logger.info("=== Echo English tutor starting ===")
        try:
            if not self.state.is_supported:
                logger.warning("Voice recognition is not supported on this device.")
            self.check_configuration()
            await self._start_api_server()
            logger.info("=== Tutor is ready. ===")
            await self.state.stop_event.wait()
        finally:
            await self.shutdown()

    async def _start_api_server(self):
        """Start the FastAPI server in the background."""
        from api.server import create_app

        app = create_app(self)

        import uvicorn
        server_config = self.config_manager.config.server
        config = uvicorn.Config(
            app, host=server_config.host, port=server_config.port, log_level="warning"
        )
        self._api_server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._api_server.serve())
        logger.info("API server started on {}:{}", server_config.host, server_config.port)

    async def shutdown(self):
        """Graceful shutdown. Safe to call more than once."""
        logger.info("Shutting down...")
        self.state.request_stop()
        try:
            self.speech_input.close()
        finally:
            if self._api_server is not None:
                self._api_server.should_exit = True
            for task in list(self._tasks):
                task.cancel()
        logger.info("Shutdown complete.")


def main():
    """Entry point."""
    import sys
    from loguru import logger as log

    log.remove()
    log.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    log.add(DATA_DIR / "tutor.log", rotation="10 MB", retention="7 days", level="DEBUG")

    orchestrator = Orchestrator()

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(orchestrator.start())
    except KeyboardInterrupt:
        loop.run_until_complete(orchestrator.shutdown())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
