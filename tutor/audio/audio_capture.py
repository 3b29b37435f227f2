import errno
import threading

import numpy as np
from loguru import logger

# Sample rate expected by the transcription API upload
SAMPLE_RATE = 16000
CHANNELS = 1
CHUNK_SIZE = 1024  # 64ms at 16kHz
FORMAT_DTYPE = np.int16


class MicrophoneDeniedError(OSError):
    """The OS refused access to the input device."""


class AudioCapture:
    """Captures microphone audio in chunks for one recognition session.

    ``open()`` and ``read_chunk()`` run in executor threads while ``close()``
    may be called from the event loop, so all three share a lock. Once
    closed, a capture never opens again. Tries 16kHz first and falls back
    to native rates with linear resampling.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE, chunk_size: int = CHUNK_SIZE):
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self._stream = None
        self._pa = None
        self._capture_rate = sample_rate
        self._capture_chunk = chunk_size
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        """Open the PyAudio input stream.

        Raises:
            MicrophoneDeniedError: access to the device was refused.
            OSError: no usable input device, or the capture was closed.
        """
        with self._lock:
            if self._closed:
                raise OSError("Audio capture already closed")
            if self._stream is not None:
                return
            self._open_stream()

    def _open_stream(self) -> None:
        import pyaudio
        self._pa = pyaudio.PyAudio()

        last_error: Exception | None = None
        for rate in [self.sample_rate, 44100, 48000]:
            try:
                capture_chunk = (
                    self.chunk_size if rate == self.sample_rate
                    else int(self.chunk_size * rate / self.sample_rate)
                )
                self._stream = self._pa.open(
                    format=pyaudio.paInt16,
                    channels=CHANNELS,
                    rate=rate,
                    input=True,
                    frames_per_buffer=capture_chunk,
                )
                self._capture_rate = rate
                self._capture_chunk = capture_chunk
                logger.info("Audio capture opened: capture={}Hz, output={}Hz", rate, self.sample_rate)
                return
            except OSError as e:
                if _is_permission_error(e):
                    self._release()
                    raise MicrophoneDeniedError(str(e)) from e
                logger.debug("Sample rate {}Hz not supported: {}", rate, e)
                last_error = e

        self._release()
        raise OSError(f"Could not open audio input stream at any supported rate: {last_error}")

    def _resample(self, chunk: np.ndarray) -> np.ndarray:
        """Resample from capture rate to target rate using linear interpolation."""
        if self._capture_rate == self.sample_rate:
            return chunk

        ratio = self.sample_rate / self._capture_rate
        n_out = self.chunk_size
        indices = np.arange(n_out) / ratio
        indices = np.clip(indices, 0, len(chunk) - 1)
        idx_floor = indices.astype(np.int32)
        idx_ceil = np.minimum(idx_floor + 1, len(chunk) - 1)
        frac = indices - idx_floor
        resampled = chunk[idx_floor] * (1 - frac) + chunk[idx_ceil] * frac
        return resampled.astype(FORMAT_DTYPE)

    def read_chunk(self) -> np.ndarray:
        """Blocking read of one chunk at the target rate. Run in an executor.

        Raises:
            OSError: the capture is not open (or was closed meanwhile).
        """
        with self._lock:
            if self._stream is None:
                raise OSError("Audio capture is not open")
            raw = self._stream.read(self._capture_chunk, exception_on_overflow=False)
        chunk = np.frombuffer(raw, dtype=FORMAT_DTYPE)
        return self._resample(chunk)

    def close(self) -> None:
        """Release the device. Blocks until an in-flight open or read finishes."""
        self._closed = True
        with self._lock:
            self._release()

    def _release(self) -> None:
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.debug("Error closing input stream: {}", e)
            self._stream = None
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None


def _is_permission_error(exc: OSError) -> bool:
    if exc.errno in (errno.EACCES, errno.EPERM):
        return True
    text = str(exc).lower()
    return "permission" in text or "not allowed" in text
