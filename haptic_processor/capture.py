"""
Audio sources for the engine.

PcmPump runs a blocking PCM reader on its own thread and hands every
block to the engine. The engine never waits on the reader and the reader
never waits on the engine; the frame queue sits between them.

FileSpectralCapture plays a sample array back as a stream of 8-bit FFT
callbacks (see ``encode_fft_bytes``), standing in for a platform
spectrum capture bound to an audio session.
"""

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np
from scipy.fft import rfft

from haptic_processor.collaborators import SpectralCapture, SpectrumListener

logger = logging.getLogger(__name__)

# read(max_samples) -> block of int16 samples, empty if nothing yet, None at end of stream
PcmReader = Callable[[int], Optional[np.ndarray]]


class PcmPump:
    """
    Background thread feeding PCM blocks from a reader into a sink.

    Usage:
        pump = PcmPump(reader, engine.push, block_size=1024)
        pump.start()
        ...
        pump.stop()
    """

    def __init__(
        self,
        reader: PcmReader,
        sink: Callable[[np.ndarray], object],
        block_size: int = 1024,
        idle_sleep: float = 0.005,
    ):
        """
        Args:
            reader: Blocking PCM source
            sink: Receives each non-empty block (e.g. ``HapticEngine.push``)
            block_size: Maximum samples requested per read
            idle_sleep: Pause after an empty read (seconds)
        """
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got: {block_size}")

        self.reader = reader
        self.sink = sink
        self.block_size = block_size
        self.idle_sleep = idle_sleep

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._finished = threading.Event()
        self.blocks_read = 0

    def start(self) -> bool:
        """Start pumping. Returns False if already running."""
        if self._running:
            return False
        self._running = True
        self._finished.clear()
        self._thread = threading.Thread(target=self._loop, name="PcmPump", daemon=True)
        self._thread.start()
        return True

    def _loop(self):
        try:
            while self._running:
                try:
                    block = self.reader(self.block_size)
                except Exception as e:
                    logger.warning(f"PCM read failed, stopping pump: {e}")
                    break

                if block is None:
                    logger.debug("PCM source exhausted")
                    break
                if len(block) == 0:
                    time.sleep(self.idle_sleep)
                    continue

                self.blocks_read += 1
                try:
                    self.sink(np.array(block, dtype=np.int16, copy=True))
                except Exception as e:
                    logger.warning(f"PCM sink rejected block: {e}")
        finally:
            self._running = False
            self._finished.set()

    def stop(self, timeout: float = 1.0):
        """Stop the pump thread."""
        self._running = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the reader is exhausted or the pump stops."""
        return self._finished.wait(timeout)

    @property
    def is_running(self) -> bool:
        return self._running


class ArrayReader:
    """
    PcmReader over an in-memory sample array.

    With ``realtime=True`` reads are paced to the sample rate, so a file
    plays back at the speed a live capture would deliver it.
    """

    def __init__(self, samples: np.ndarray, sample_rate: int, realtime: bool = True):
        self.samples = np.asarray(samples, dtype=np.int16).ravel()
        self.sample_rate = sample_rate
        self.realtime = realtime
        self._pos = 0
        self._start: Optional[float] = None

    def __call__(self, max_samples: int) -> Optional[np.ndarray]:
        if self._pos >= self.samples.size:
            return None

        if self.realtime:
            if self._start is None:
                self._start = time.perf_counter()
            due = self._start + (self._pos + max_samples) / float(self.sample_rate)
            delay = due - time.perf_counter()
            if delay > 0:
                time.sleep(delay)

        block = self.samples[self._pos : self._pos + max_samples]
        self._pos += block.size
        return block

    @property
    def position_seconds(self) -> float:
        return self._pos / float(self.sample_rate)


def encode_fft_bytes(samples: np.ndarray) -> bytes:
    """
    Encode a sample block as 8-bit interleaved (re, im) FFT bytes.

    Produces the same layout a platform spectrum capture delivers, so a
    file can stand in for a live audio session.
    """
    samples = np.asarray(samples, dtype=np.float32).ravel() / 32768.0
    n = samples.size
    if n < 2:
        return b""
    spectrum = rfft(samples * np.hanning(n))[: n // 2]
    # Scale so a full-scale sine lands near the int8 limit
    scaled = spectrum * (256.0 / n)
    interleaved = np.empty(scaled.size * 2, dtype=np.float32)
    interleaved[0::2] = scaled.real
    interleaved[1::2] = scaled.imag
    return np.clip(np.round(interleaved), -128, 127).astype(np.int8).tobytes()


class FileSpectralCapture(SpectralCapture):
    """
    Spectral capture driven from an in-memory sample array.

    Delivers one spectrum per ``capture_size`` samples at the file's real
    rate (or as fast as possible), on its own thread, the way a platform
    capture calls back.

    When a ``pcm_sink`` is set, the raw block behind each spectrum is handed
    to it just before the listener runs, so a loudness channel fed from
    the sink always lines up with the spectrum it belongs to.
    """

    def __init__(self, samples: np.ndarray, sample_rate: int,
                 capture_size: int = 1024, realtime: bool = True,
                 autostart: bool = True):
        """
        Args:
            samples: Mono int16 samples to play back
            sample_rate: Sample rate of ``samples``
            capture_size: Samples per delivered spectrum
            realtime: Pace deliveries at the file's rate
            autostart: Deliver as soon as enabled. With False nothing is
                delivered until ``start()``, leaving time to wire sinks.
        """
        self.samples = np.asarray(samples, dtype=np.int16).ravel()
        self.sample_rate = sample_rate
        self.capture_size = capture_size
        self.realtime = realtime

        self._listener: Optional[SpectrumListener] = None
        self._pcm_sink: Optional[Callable[[np.ndarray], object]] = None
        self._enabled = threading.Event()
        self._started = threading.Event()
        if autostart:
            self._started.set()
        self._running = True
        self._finished = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="FileSpectralCapture", daemon=True)
        self._thread.start()

    def set_listener(self, listener: Optional[SpectrumListener]) -> None:
        self._listener = listener

    def set_pcm_sink(self, sink: Optional[Callable[[np.ndarray], object]]) -> None:
        self._pcm_sink = sink

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self._enabled.set()
        else:
            self._enabled.clear()

    def start(self) -> None:
        self._started.set()

    def _loop(self):
        interval = self.capture_size / float(self.sample_rate)
        pos = 0
        try:
            while self._running and pos < self.samples.size:
                if not self._started.wait(0.05) or not self._enabled.wait(0.05):
                    continue
                block = self.samples[pos : pos + self.capture_size]
                pos += self.capture_size
                self._deliver(block)
                if self.realtime:
                    time.sleep(interval)
        finally:
            self._finished.set()

    def _deliver(self, block: np.ndarray):
        sink = self._pcm_sink
        if sink is not None:
            try:
                sink(block)
            except Exception as e:
                logger.warning(f"PCM sink failed: {e}")
        listener = self._listener
        if listener is not None:
            try:
                listener(encode_fft_bytes(block), self.sample_rate)
            except Exception as e:
                logger.warning(f"Spectrum listener failed: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the whole array has been delivered."""
        return self._finished.wait(timeout)

    def release(self) -> None:
        self._running = False
        self._listener = None
        self._pcm_sink = None
        self._started.set()
        self._enabled.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
