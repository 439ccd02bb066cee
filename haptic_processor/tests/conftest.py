"""Shared pytest fixtures for the haptic processor test suite.

Fake collaborators record every call into a shared event log so tests can
check both what the engine asked for and in which order.
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np
import pytest

from haptic_processor.collaborators import (
    HardwareAccelerator,
    RecordingActuator,
    SpectralCapture,
)
from haptic_processor.synthesizer import BandKind


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeCapture(SpectralCapture):
    """Spectral capture that never calls back on its own."""

    def __init__(self, events: List[str], fail_enable: bool = False):
        self.events = events
        self.fail_enable = fail_enable
        self.listener = None
        self.enabled = False
        self.released = False

    def set_listener(self, listener) -> None:
        self.listener = listener
        self.events.append("capture.listener" if listener else "capture.unsubscribe")

    def set_enabled(self, enabled: bool) -> None:
        if self.fail_enable and enabled:
            raise RuntimeError("capture unavailable")
        self.enabled = enabled
        self.events.append(f"capture.enabled={enabled}")

    def release(self) -> None:
        self.released = True
        self.events.append("capture.release")


class FakeAccelerator(HardwareAccelerator):
    """Hardware probe with scriptable availability and init failure."""

    def __init__(self, events: List[str], available: bool = True, fail_enable: bool = False):
        self.events = events
        self.available = available
        self.fail_enable = fail_enable
        self.session_id: Optional[int] = None
        self.enabled = False

    def is_available(self) -> bool:
        return self.available

    def enable(self, session_id: int) -> None:
        if self.fail_enable:
            raise RuntimeError("generator init failed")
        self.session_id = session_id
        self.enabled = True
        self.events.append(f"hw.enable={session_id}")

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        self.events.append(f"hw.enabled={enabled}")

    def release(self) -> None:
        self.events.append("hw.release")


class EventActuator(RecordingActuator):
    """Recording actuator that also writes to the shared event log."""

    def __init__(self, events: List[str], **kwargs):
        super().__init__(**kwargs)
        self.events = events

    def cancel(self) -> None:
        super().cancel()
        self.events.append("actuator.cancel")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def events() -> List[str]:
    return []


@pytest.fixture()
def actuator(events) -> EventActuator:
    return EventActuator(events)


@pytest.fixture()
def capture(events) -> FakeCapture:
    return FakeCapture(events)


@pytest.fixture()
def accelerator(events) -> FakeAccelerator:
    return FakeAccelerator(events)


@pytest.fixture()
def failing_capture(events) -> FakeCapture:
    return FakeCapture(events, fail_enable=True)


@pytest.fixture()
def failing_accelerator(events) -> FakeAccelerator:
    return FakeAccelerator(events, fail_enable=True)


@pytest.fixture()
def bass_only_actuator(events) -> EventActuator:
    """Actuator that can only compose bass pulses."""
    return EventActuator(events, supported_bands=[BandKind.BASS])


@pytest.fixture()
def loud_samples() -> np.ndarray:
    """Full-scale-ish block whose loudness clamps to 1.0."""
    return np.full(900, 10000, dtype=np.int16)


@pytest.fixture()
def silent_samples() -> np.ndarray:
    return np.zeros(900, dtype=np.int16)


def _spectrum_bytes(bass: int, mid: int, high: int, bins: int = 441) -> bytes:
    """
    Interleaved FFT bytes with a constant real part per band.

    With 441 bins at 44.1 kHz the bands are bins [0, 4), [4, 30), [30, 441).
    """
    raw = np.zeros(bins * 2, dtype=np.int8)
    raw[0:8:2] = bass
    raw[8:60:2] = mid
    raw[60::2] = high
    return raw.tobytes()


@pytest.fixture()
def spectrum_bytes():
    return _spectrum_bytes
