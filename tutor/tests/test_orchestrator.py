"""Tests for the conversation orchestrator, driven through fake engines."""
import asyncio

import pytest

from audio.recognizer import UnsupportedSpeechInput
from audio.synthesizer import UnsupportedSpeechOutput
from core.conversation import Message, Role
from core.errors import ConfigurationError, ErrorKind
from core.main import Orchestrator
from core.state import AssistantStatus


GOED = "I goed to the store"
WENT = (
    "Almost! The past tense of 'go' is 'went,' so you'd say "
    "'I went to the store.' What did you buy?"
)


def listen(orchestrator, engine):
    """Toggle the mic on and let the engine report audio capture."""
    orchestrator.toggle_listening()
    engine.audio_start()


class TestStartConversation:
    @pytest.mark.asyncio
    async def test_opening_produces_one_assistant_message(self, orchestrator, chat, synthesis_engine):
        chat.replies = ["Hello! I'm Echo. What did you do today?"]
        await orchestrator.start_conversation()

        history = orchestrator.conversation
        assert len(history) == 1
        assert history[0].role == Role.ASSISTANT
        assert orchestrator.status == AssistantStatus.SPEAKING
        assert synthesis_engine.spoken == ["Hello! I'm Echo. What did you do today?"]

    @pytest.mark.asyncio
    async def test_opening_uses_empty_history_and_priming_prompt(self, orchestrator, chat):
        await orchestrator.start_conversation()
        text, history = chat.calls[0]
        assert history == ()
        assert "Start our English lesson" in text
        assert "Echo" in text

    @pytest.mark.asyncio
    async def test_twice_in_succession_yields_one_opening(self, orchestrator, chat):
        chat.gate = asyncio.Event()
        first = asyncio.create_task(orchestrator.start_conversation())
        second = asyncio.create_task(orchestrator.start_conversation())
        await asyncio.sleep(0)
        assert orchestrator.status == AssistantStatus.PROCESSING
        chat.gate.set()
        await asyncio.gather(first, second)

        assert len(chat.calls) == 1
        assert len(orchestrator.conversation) == 1

    @pytest.mark.asyncio
    async def test_noop_when_history_exists(self, orchestrator, chat, synthesis_engine):
        await orchestrator.start_conversation()
        synthesis_engine.finish()
        await orchestrator.start_conversation()
        assert len(chat.calls) == 1

    @pytest.mark.asyncio
    async def test_opening_failure_returns_to_idle(self, orchestrator, chat, network_error):
        chat.replies = [network_error]
        await orchestrator.start_conversation()

        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.conversation == ()
        assert orchestrator.error.kind == ErrorKind.NETWORK
        assert "503" in orchestrator.error.message

        # Retry is allowed after a network error
        await orchestrator.start_conversation()
        assert len(orchestrator.conversation) == 1
        assert orchestrator.error is None

    @pytest.mark.asyncio
    async def test_configuration_error_blocks_start(self, orchestrator, chat):
        chat.start_error = ConfigurationError("Chat API key not found.")
        assert not orchestrator.check_configuration()
        assert orchestrator.error.kind == ErrorKind.CONFIGURATION
        assert not orchestrator.state.can_start

        await orchestrator.start_conversation()
        assert chat.calls == []
        assert orchestrator.status == AssistantStatus.IDLE


class TestTurns:
    @pytest.mark.asyncio
    async def test_goed_to_the_store_scenario(
        self, orchestrator, chat, recognition_engine, synthesis_engine, drain
    ):
        chat.replies = [WENT]
        listen(orchestrator, recognition_engine)
        assert orchestrator.status == AssistantStatus.LISTENING

        recognition_engine.final(GOED)
        recognition_engine.end()
        assert orchestrator.status == AssistantStatus.PROCESSING
        assert [m.text for m in orchestrator.conversation] == [GOED]

        await drain()
        history = orchestrator.conversation
        assert len(history) == 2
        assert (history[0].role, history[0].text) == (Role.USER, GOED)
        assert (history[1].role, history[1].text) == (Role.ASSISTANT, WENT)
        assert orchestrator.status == AssistantStatus.SPEAKING
        assert synthesis_engine.spoken == [WENT]

        synthesis_engine.begin()
        assert orchestrator.status == AssistantStatus.SPEAKING
        synthesis_engine.finish()

        # Listening resumes without user action
        assert orchestrator.status == AssistantStatus.LISTENING
        assert recognition_engine.active
        assert recognition_engine.start_calls == 2

    @pytest.mark.asyncio
    async def test_user_message_recorded_before_chat_call(self, orchestrator, chat, recognition_engine, drain):
        seen = []

        async def send_message(text, history):
            seen.append([m.text for m in orchestrator.conversation])
            return "Nice!"

        chat.send_message = send_message
        listen(orchestrator, recognition_engine)
        recognition_engine.final("  I like tea  ")
        await drain()

        assert seen == [["I like tea"]]
        assert orchestrator.conversation[0].text == "I like tea"

    @pytest.mark.asyncio
    async def test_history_snapshot_excludes_new_utterance(
        self, orchestrator, chat, recognition_engine, synthesis_engine, drain
    ):
        await orchestrator.start_conversation()
        opening = orchestrator.conversation
        synthesis_engine.finish()

        recognition_engine.audio_start()
        recognition_engine.final("I played football")
        await drain()

        text, history = chat.calls[1]
        assert text == "I played football"
        assert history == opening

    @pytest.mark.asyncio
    async def test_network_failure_on_second_turn(
        self, orchestrator, chat, recognition_engine, synthesis_engine, network_error, drain
    ):
        chat.replies = ["Great! What did you buy?", network_error]

        listen(orchestrator, recognition_engine)
        recognition_engine.final("I went shopping")
        recognition_engine.end()
        await drain()
        synthesis_engine.finish()

        recognition_engine.audio_start()
        recognition_engine.final("I buyed apples")
        recognition_engine.end()
        await drain()

        history = orchestrator.conversation
        assert len(history) == 3
        assert history[-1] == Message(Role.USER, "I buyed apples")
        assert orchestrator.error.kind == ErrorKind.NETWORK
        assert orchestrator.status == AssistantStatus.IDLE

    @pytest.mark.asyncio
    async def test_chat_timeout_is_network_error(self, orchestrator, chat, recognition_engine, drain):
        orchestrator.config_manager.update_nested("chat", timeout_seconds=0.01)
        chat.gate = asyncio.Event()

        listen(orchestrator, recognition_engine)
        recognition_engine.final("Hello")
        await drain()

        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.error.kind == ErrorKind.NETWORK
        assert len(orchestrator.conversation) == 1

    @pytest.mark.asyncio
    async def test_empty_final_transcript_goes_idle(self, orchestrator, chat, recognition_engine):
        listen(orchestrator, recognition_engine)
        recognition_engine.final("   ")

        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.conversation == ()
        assert chat.calls == []

    @pytest.mark.asyncio
    async def test_transcript_ignored_while_processing(self, orchestrator, chat, recognition_engine, drain):
        chat.gate = asyncio.Event()
        listen(orchestrator, recognition_engine)
        recognition_engine.final("First")
        assert orchestrator.process_speech("Second") is None

        chat.gate.set()
        await drain()
        assert [m.text for m in orchestrator.conversation] == ["First", "Tell me more!"]
        assert len(chat.calls) == 1

    @pytest.mark.asyncio
    async def test_synthesis_error_keeps_reply_in_history(
        self, orchestrator, chat, recognition_engine, synthesis_engine, drain
    ):
        listen(orchestrator, recognition_engine)
        recognition_engine.final("Hello there")
        await drain()
        synthesis_engine.fail()

        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.error.kind == ErrorKind.SYNTHESIS
        assert orchestrator.conversation[-1].role == Role.ASSISTANT
        assert recognition_engine.start_calls == 1


class TestListening:
    def test_initial_state(self, orchestrator):
        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.conversation == ()
        assert orchestrator.current_transcript == ""
        assert orchestrator.error is None
        assert orchestrator.is_supported

    def test_toggle_without_speech_support_stays_idle(self, config_manager, chat):
        speech_output = UnsupportedSpeechOutput()
        orchestrator = Orchestrator(
            config_manager=config_manager,
            chat_client=chat,
            speech_input=UnsupportedSpeechInput(speech_output),
            speech_output=speech_output,
        )
        orchestrator.toggle_listening()
        orchestrator.toggle_listening()

        assert not orchestrator.is_supported
        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.state.start_blocked

    @pytest.mark.asyncio
    async def test_toggle_stops_gracefully(self, orchestrator, recognition_engine):
        listen(orchestrator, recognition_engine)
        orchestrator.toggle_listening()
        assert recognition_engine.stop_calls == 1
        assert orchestrator.status == AssistantStatus.LISTENING

        recognition_engine.end()
        assert orchestrator.status == AssistantStatus.IDLE

    @pytest.mark.asyncio
    async def test_final_result_after_stop_still_processed(self, orchestrator, recognition_engine, drain):
        listen(orchestrator, recognition_engine)
        orchestrator.toggle_listening()
        recognition_engine.final("Wait, one more thing")
        recognition_engine.end()
        assert orchestrator.status == AssistantStatus.PROCESSING
        await drain()
        assert len(orchestrator.conversation) == 2

    @pytest.mark.asyncio
    async def test_repeated_toggles_never_double_start(self, orchestrator, recognition_engine):
        for _ in range(5):
            orchestrator.toggle_listening()  # idle -> listening
            recognition_engine.end()         # back to idle
            orchestrator.toggle_listening()
        assert recognition_engine.active
        assert orchestrator.status == AssistantStatus.LISTENING
        # A start while the engine is running is treated as success
        orchestrator.state.status = AssistantStatus.IDLE
        orchestrator.toggle_listening()
        assert orchestrator.status == AssistantStatus.LISTENING
        assert orchestrator.error is None

    @pytest.mark.asyncio
    async def test_toggle_ignored_while_processing(self, orchestrator, chat, recognition_engine, drain):
        chat.gate = asyncio.Event()
        listen(orchestrator, recognition_engine)
        recognition_engine.final("Hello")
        recognition_engine.end()
        starts = recognition_engine.start_calls

        orchestrator.toggle_listening()
        assert recognition_engine.start_calls == starts
        assert orchestrator.status == AssistantStatus.PROCESSING

        chat.gate.set()
        await drain()

    @pytest.mark.asyncio
    async def test_toggle_while_speaking_interrupts_reply(
        self, orchestrator, recognition_engine, synthesis_engine, drain
    ):
        listen(orchestrator, recognition_engine)
        recognition_engine.final("Hello")
        recognition_engine.end()
        await drain()
        assert orchestrator.status == AssistantStatus.SPEAKING

        orchestrator.toggle_listening()
        assert synthesis_engine.current is None
        assert orchestrator.status == AssistantStatus.LISTENING
        # The cancelled utterance's "interrupted" error is not surfaced
        assert orchestrator.error is None

    def test_permission_denied_on_first_start(self, orchestrator, recognition_engine):
        recognition_engine.deny_permission = True
        orchestrator.toggle_listening()

        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.error.kind == ErrorKind.PERMISSION
        assert orchestrator.conversation == ()
        assert orchestrator.state.can_start

    @pytest.mark.parametrize("code", ["no-speech", "audio-capture"])
    def test_benign_recognition_errors_are_silent(self, orchestrator, recognition_engine, code):
        listen(orchestrator, recognition_engine)
        recognition_engine.error(code)
        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.error is None

    def test_not_allowed_error(self, orchestrator, recognition_engine):
        listen(orchestrator, recognition_engine)
        recognition_engine.error("not-allowed")
        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.error.kind == ErrorKind.PERMISSION

    def test_other_recognition_error_reported_verbatim(self, orchestrator, recognition_engine):
        listen(orchestrator, recognition_engine)
        recognition_engine.error("network")
        assert orchestrator.status == AssistantStatus.IDLE
        assert orchestrator.error.kind == ErrorKind.RECOGNITION
        assert orchestrator.error.message == "Speech Recognition Error: network"

    def test_audio_start_clears_previous_error(self, orchestrator, recognition_engine):
        listen(orchestrator, recognition_engine)
        recognition_engine.error("network")
        listen(orchestrator, recognition_engine)
        assert orchestrator.error is None

    def test_interim_transcript_visible_while_listening(self, orchestrator, recognition_engine):
        listen(orchestrator, recognition_engine)
        recognition_engine.interim("I goed")
        assert orchestrator.current_transcript == "I goed"
        recognition_engine.end()
        assert orchestrator.current_transcript == ""


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_reset_clears_session(self, orchestrator, chat, synthesis_engine, recognition_engine):
        await orchestrator.start_conversation()
        orchestrator.reset()

        assert orchestrator.conversation == ()
        assert orchestrator.status == AssistantStatus.IDLE
        assert synthesis_engine.current is None
        assert recognition_engine.abort_calls == 1
        assert chat.resets == 1

        await orchestrator.start_conversation()
        assert len(orchestrator.conversation) == 1

    @pytest.mark.asyncio
    async def test_reset_drops_in_flight_reply(self, orchestrator, chat, recognition_engine):
        chat.gate = asyncio.Event()
        listen(orchestrator, recognition_engine)
        task = orchestrator.process_speech("Hello")
        await asyncio.sleep(0)
        orchestrator.reset()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert orchestrator.conversation == ()

    @pytest.mark.asyncio
    async def test_reset_during_opening_discards_it(self, orchestrator, chat, synthesis_engine):
        chat.gate = asyncio.Event()
        chat.replies = ["Welcome back! What did you do today?"]
        opening = asyncio.create_task(orchestrator.start_conversation())
        await asyncio.sleep(0)
        assert orchestrator.status == AssistantStatus.PROCESSING

        orchestrator.reset()
        await opening
        assert orchestrator.status == AssistantStatus.IDLE

        chat.gate.set()
        await orchestrator.start_conversation()
        assert [m.text for m in orchestrator.conversation] == ["Welcome back! What did you do today?"]
        assert synthesis_engine.spoken == ["Welcome back! What did you do today?"]
        assert orchestrator.status == AssistantStatus.SPEAKING

    @pytest.mark.asyncio
    async def test_shutdown_cancels_opening(self, orchestrator, chat):
        chat.gate = asyncio.Event()
        opening = asyncio.create_task(orchestrator.start_conversation())
        await asyncio.sleep(0)
        await orchestrator.shutdown()
        await opening
        chat.gate.set()
        await asyncio.sleep(0)
        assert orchestrator.conversation == ()

    @pytest.mark.asyncio
    async def test_shutdown_releases_engines(self, orchestrator, recognition_engine, synthesis_engine):
        listen(orchestrator, recognition_engine)
        await orchestrator.shutdown()
        assert recognition_engine.abort_calls == 1
        assert synthesis_engine.cancel_calls >= 1
        assert not orchestrator.state.is_running

    def test_check_configuration_opens_session(self, orchestrator, chat):
        assert orchestrator.check_configuration()
        assert chat.session_starts == 1
        assert orchestrator.error is None
