from loguru import logger


class CloudTextToSpeech:
    """Text-to-speech through the OpenAI audio API, returned as WAV bytes."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini-tts", voice: str = "alloy"):
        self.api_key = api_key
        self.model = model
        self.voice = voice
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)

    async def synthesize(self, text: str) -> bytes:
        """Synthesize text to WAV audio bytes. Errors propagate to the caller."""
        if not text or not text.strip():
            return b""

        self._ensure_client()
        response = await self._client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=text,
            response_format="wav",
        )
        audio_bytes = response.content
        logger.debug("TTS: synthesized {} bytes for '{}'", len(audio_bytes), text[:50])
        return audio_bytes
