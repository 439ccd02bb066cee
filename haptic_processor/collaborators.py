"""
Interfaces to the world outside the engine.

The engine only decides what to play. Emitting vibration, capturing
spectra and probing for hardware haptic generation are done by the
objects defined here. Subclass the base classes to bind a real platform;
the in-process implementations cover dry runs and tests.
"""

import logging
import threading
from typing import Callable, Iterable, List, Optional, Tuple

from haptic_processor.synthesizer import BandKind, Effect

logger = logging.getLogger(__name__)

# (fft_bytes, sample_rate_hz)
SpectrumListener = Callable[[bytes, int], None]


class Actuator:
    """Vibration output device."""

    def play_effect(self, effect: Effect) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError

    def supports_pattern(self, bands: Iterable[BandKind]) -> bool:
        """Whether a composite of pulses tagged with these bands can be played."""
        return False

    def supports_predefined(self, name: str) -> bool:
        return False

    def one_shot(self, amplitude: int, duration_ms: int) -> None:
        raise NotImplementedError


class SpectralCapture:
    """Source of periodic spectrum callbacks bound to an audio session."""

    def set_listener(self, listener: Optional[SpectrumListener]) -> None:
        raise NotImplementedError

    def set_enabled(self, enabled: bool) -> None:
        raise NotImplementedError

    def release(self) -> None:
        pass


class HardwareAccelerator:
    """Platform audio-to-haptics generator that bypasses the software pipeline."""

    def is_available(self) -> bool:
        return False

    def enable(self, session_id: int) -> None:
        raise NotImplementedError

    def set_enabled(self, enabled: bool) -> None:
        """Suspend or restore generation without releasing it."""
        pass

    def release(self) -> None:
        pass


class NoAccelerator(HardwareAccelerator):
    """Accelerator probe for platforms without hardware haptic generation."""

    def is_available(self) -> bool:
        return False

    def enable(self, session_id: int) -> None:
        raise RuntimeError("Hardware haptic generation is not available")


class RecordingActuator(Actuator):
    """
    Actuator that records every request instead of vibrating.

    Thread-safe; the engine may call it from a worker or capture thread
    while the caller inspects ``calls``.
    """

    def __init__(self, supported_bands: Optional[Iterable[BandKind]] = None,
                 predefined: Iterable[str] = ()):
        """
        Args:
            supported_bands: Bands the device can compose (None = all)
            predefined: Names of platform effects the device provides
        """
        self._supported = None if supported_bands is None else frozenset(supported_bands)
        self._predefined = frozenset(predefined)
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, object]] = []

    def _record(self, name: str, arg=None):
        with self._lock:
            self.calls.append((name, arg))

    def play_effect(self, effect: Effect) -> None:
        self._record("play", effect)

    def cancel(self) -> None:
        self._record("cancel")

    def one_shot(self, amplitude: int, duration_ms: int) -> None:
        self._record("one_shot", (amplitude, duration_ms))

    def supports_pattern(self, bands: Iterable[BandKind]) -> bool:
        if self._supported is None:
            return True
        return all(band in self._supported for band in bands)

    def supports_predefined(self, name: str) -> bool:
        return name in self._predefined

    @property
    def effects(self) -> List[Effect]:
        """Effects passed to play_effect, in order."""
        with self._lock:
            return [arg for name, arg in self.calls if name == "play"]

    def count(self, name: str) -> int:
        with self._lock:
            return sum(1 for call, _ in self.calls if call == name)

    def clear(self):
        with self._lock:
            self.calls.clear()


class LoggingActuator(RecordingActuator):
    """Recording actuator that also logs each request (CLI dry runs)."""

    def play_effect(self, effect: Effect) -> None:
        super().play_effect(effect)
        logger.info(f"play {effect}")

    def cancel(self) -> None:
        super().cancel()
        logger.info("cancel")

    def one_shot(self, amplitude: int, duration_ms: int) -> None:
        super().one_shot(amplitude, duration_ms)
        logger.info(f"one_shot amplitude={amplitude} duration={duration_ms}ms")
