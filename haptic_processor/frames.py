"""
Audio frame model and decoders.

A frame is one batch of audio handed to the engine by a producer. It is
either a block of signed 16-bit samples (time domain) or a magnitude
spectrum decoded from interleaved real/imaginary bytes (frequency domain).
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


class FrameDomain(Enum):
    """Which representation a frame carries."""

    TIME = "time"
    FREQUENCY = "frequency"


@dataclass
class Frame:
    """One batch of audio data."""

    domain: FrameDomain
    data: np.ndarray  # int16 samples (TIME) or float32 magnitudes (FREQUENCY)
    sample_rate: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return self.data is None or self.data.size == 0

    def __len__(self) -> int:
        return 0 if self.data is None else int(self.data.size)


def from_samples(samples, sample_rate: Optional[int] = None) -> Frame:
    """Build a time-domain frame from a sequence of 16-bit samples.

    The samples are copied so the producer can reuse its buffer.
    """
    data = np.array(samples, dtype=np.int16, copy=True).ravel()
    return Frame(domain=FrameDomain.TIME, data=data, sample_rate=sample_rate)


def from_pcm_bytes(pcm_data: bytes, channels: int = 1, sample_rate: Optional[int] = None) -> Frame:
    """
    Build a time-domain frame from raw little-endian 16-bit PCM bytes.

    Args:
        pcm_data: Raw PCM bytes
        channels: Interleaved channel count (stereo is averaged to mono)
        sample_rate: Source sample rate, if known

    Returns:
        Frame with int16 mono samples
    """
    usable = len(pcm_data) - (len(pcm_data) % 2)
    samples = np.frombuffer(pcm_data[:usable], dtype="<i2")

    if channels > 1 and samples.size >= channels:
        frames = samples.size // channels
        samples = samples[: frames * channels].reshape(frames, channels)
        samples = np.mean(samples.astype(np.int32), axis=1).astype(np.int16)
    else:
        samples = samples.copy()

    return Frame(domain=FrameDomain.TIME, data=samples, sample_rate=sample_rate)


def magnitudes_from_fft_bytes(fft_bytes: bytes) -> np.ndarray:
    """
    Decode interleaved (re, im) signed byte pairs into per-bin magnitudes.

    A trailing odd byte is ignored.
    """
    raw = np.frombuffer(bytes(fft_bytes), dtype=np.int8)
    bins = raw.size // 2
    if bins == 0:
        return np.zeros(0, dtype=np.float32)
    pairs = raw[: bins * 2].astype(np.float32).reshape(bins, 2)
    return np.hypot(pairs[:, 0], pairs[:, 1]).astype(np.float32)


def from_fft_bytes(fft_bytes: bytes, sample_rate: Optional[int] = None) -> Frame:
    """Build a frequency-domain frame from a capture callback's FFT bytes."""
    return Frame(
        domain=FrameDomain.FREQUENCY,
        data=magnitudes_from_fft_bytes(fft_bytes),
        sample_rate=sample_rate,
    )
