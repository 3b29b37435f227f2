import asyncio
from typing import Callable, Optional

import numpy as np
from loguru import logger

from audio.audio_capture import SAMPLE_RATE


def rms(chunk: np.ndarray) -> float:
    """Root-mean-square energy of an int16 chunk."""
    if len(chunk) == 0:
        return 0.0
    return float(np.sqrt(np.mean(chunk.astype(np.float32) ** 2)))


class EnergyVAD:
    """End-of-utterance detection from chunk energy.

    A chunk is speech when its RMS exceeds ``speech_threshold``. Capture
    ends after ``silence_duration`` of quiet once speech has started.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        silence_duration: float = 0.8,
        max_duration: float = 15.0,
        speech_threshold: float = 300.0,
    ):
        self.sample_rate = sample_rate
        self.silence_duration = silence_duration
        self.max_duration = max_duration
        self.speech_threshold = speech_threshold

    def is_speech(self, chunk: np.ndarray) -> bool:
        return rms(chunk) > self.speech_threshold

    async def capture_until_silence(
        self,
        audio_capture,
        initial_wait: float = 5.0,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> Optional[np.ndarray]:
        """Record audio until the speaker stops talking.

        Recording ends when:
        - silence_duration of non-speech follows speech
        - max_duration is reached
        - ``should_stop()`` turns true (keeps what was captured)
        - no speech is heard within initial_wait seconds

        Returns:
            int16 array of the captured audio, or None if no speech.
        """
        loop = asyncio.get_running_loop()
        frames = []
        speech_started = False
        silence_time = 0.0
        total_time = 0.0

        while total_time < self.max_duration and not should_stop():
            chunk = await loop.run_in_executor(None, audio_capture.read_chunk)
            frames.append(chunk)
            chunk_time = len(chunk) / self.sample_rate
            total_time += chunk_time

            if self.is_speech(chunk):
                speech_started = True
                silence_time = 0.0
            elif speech_started:
                silence_time += chunk_time
                if silence_time >= self.silence_duration:
                    logger.debug("End of speech detected after {:.1f}s", total_time)
                    break

            if total_time >= initial_wait and not speech_started:
                logger.debug("No speech detected within {:.0f}s.", initial_wait)
                return None

        if not speech_started:
            return None

        audio = np.concatenate(frames)
        logger.debug("Captured {:.1f}s of audio.", len(audio) / self.sample_rate)
        return audio
