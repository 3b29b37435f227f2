import asyncio
import subprocess
import tempfile
import threading

from loguru import logger


class PlaybackError(RuntimeError):
    pass


class AudioPlayer:
    """Plays WAV bytes through PipeWire/PulseAudio (paplay).

    ``stop()`` kills the running paplay, which makes the pending ``play()``
    return early without raising. Each ``stop()`` also bumps a generation
    counter; a playback whose thread has not launched paplay yet checks it
    under the lock and never starts.
    """

    def __init__(self, timeout: float = 120.0):
        self.timeout = timeout
        self._current_process: subprocess.Popen | None = None
        self._generation = 0
        self._lock = threading.Lock()

    async def play(self, wav_bytes: bytes) -> None:
        """Play complete WAV file bytes.

        Raises:
            PlaybackError: paplay is missing, failed or timed out.
        """
        if not wav_bytes:
            return

        generation = self._generation
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._play_sync, wav_bytes, generation)

    def _play_sync(self, wav_bytes: bytes, generation: int) -> None:
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=True) as tmp:
            tmp.write(wav_bytes)
            tmp.flush()

            with self._lock:
                if generation != self._generation:
                    logger.debug("Playback stopped before it started.")
                    return
                try:
                    proc = subprocess.Popen(
                        ["paplay", tmp.name],
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.PIPE,
                    )
                except FileNotFoundError as e:
                    raise PlaybackError("paplay not found. Install pulseaudio-utils.") from e
                self._current_process = proc

            try:
                proc.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                proc.kill()
                raise PlaybackError(f"Audio playback timed out ({self.timeout:.0f}s)") from e
            finally:
                with self._lock:
                    if self._current_process is proc:
                        self._current_process = None

            if proc.returncode != 0 and generation == self._generation:
                stderr = proc.stderr.read().decode().strip()
                raise PlaybackError(f"paplay error: {stderr or proc.returncode}")

    def stop(self) -> None:
        """Stop current audio and any playback that has not launched yet."""
        with self._lock:
            self._generation += 1
            proc, self._current_process = self._current_process, None
        if proc is not None:
            try:
                proc.kill()
                logger.info("Audio playback stopped (killed paplay).")
            except OSError as e:
                logger.debug("Error killing paplay: {}", e)
