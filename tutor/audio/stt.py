import io
import wave

import numpy as np
from loguru import logger

from audio.audio_capture import SAMPLE_RATE


class CloudSpeechToText:
    """Transcription through the OpenAI audio API."""

    def __init__(self, api_key: str, model: str = "whisper-1", language: str = "en-US"):
        self.api_key = api_key
        self.model = model
        self.language = language
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)

    @staticmethod
    def audio_to_wav_bytes(audio: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
        """Convert int16 numpy audio array to WAV bytes in memory."""
        if audio.dtype != np.int16:
            audio = (audio * 32768.0).astype(np.int16)

        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)  # 16-bit
            wf.setframerate(sample_rate)
            wf.writeframes(audio.tobytes())
        return buf.getvalue()

    async def transcribe(self, audio: np.ndarray) -> str:
        """Transcribe int16 16kHz audio. Errors propagate to the caller."""
        self._ensure_client()

        audio_file = io.BytesIO(self.audio_to_wav_bytes(audio))
        audio_file.name = "audio.wav"

        # The API takes ISO 639-1 codes, not BCP 47 tags
        response = await self._client.audio.transcriptions.create(
            model=self.model,
            file=audio_file,
            language=self.language.split("-")[0].lower(),
        )
        text = response.text.strip()
        logger.debug("STT result: '{}'", text)
        return text
