"""
Three-band energy analysis for haptic mapping.

Reduces a frame to pseudo bass/mid/high energies, a single loudness
scalar in [0, 1], and normalized band ratios.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from haptic_processor.frames import Frame, FrameDomain, from_pcm_bytes

logger = logging.getLogger(__name__)

# Guards the ratio division on silent frames
RATIO_EPSILON = 1e-9

# Full-scale value of a signed 16-bit sample
FULL_SCALE = 32768.0


@dataclass
class BandEnergies:
    """Raw per-band energy for one frame (non-negative)."""

    bass: float = 0.0
    mid: float = 0.0
    high: float = 0.0

    @property
    def total(self) -> float:
        return self.bass + self.mid + self.high


@dataclass
class BandRatios:
    """Band energies normalized so they sum to ~1."""

    bass: float = 1.0 / 3.0
    mid: float = 1.0 / 3.0
    high: float = 1.0 / 3.0

    @property
    def maximum(self) -> float:
        return max(self.bass, self.mid, self.high)

    def as_dict(self) -> dict:
        return {"bass": self.bass, "mid": self.mid, "high": self.high}


@dataclass
class BandAnalysis:
    """Analyzer output for one frame."""

    energies: BandEnergies
    ratios: BandRatios
    loudness: float  # Weighted, full-scale-normalized energy (0-1)
    silent: bool = False


class BandAnalyzer:
    """
    Splits a frame into three pseudo-frequency bands.

    Time-domain frames are cut into three equal contiguous partitions and
    the RMS of each is taken. Frequency-domain frames are split at fixed
    crossover frequencies and the magnitudes inside each range are summed.
    """

    # Crossover frequencies (Hz) for spectral frames
    BASS_CUTOFF_HZ = 200
    MID_CUTOFF_HZ = 1500

    # Loudness weights emphasise low/mid content
    BAND_WEIGHTS = (1.5, 2.5, 0.25)

    # Used when a spectral frame arrives without a sample rate
    DEFAULT_NYQUIST = 22050

    def __init__(
        self,
        weights: tuple = BAND_WEIGHTS,
        full_scale: float = FULL_SCALE,
        default_nyquist: int = DEFAULT_NYQUIST,
    ):
        """
        Initialize the analyzer.

        Args:
            weights: (bass, mid, high) loudness weights
            full_scale: Divisor that maps weighted energy into [0, 1]
            default_nyquist: Nyquist frequency assumed for spectra with no sample rate
        """
        if len(weights) != 3:
            raise ValueError(f"Expected 3 band weights, got {len(weights)}")
        if full_scale <= 0:
            raise ValueError(f"full_scale must be positive, got: {full_scale}")

        self.weights = tuple(float(w) for w in weights)
        self.full_scale = float(full_scale)
        self.default_nyquist = default_nyquist

    def analyze(self, frame: Optional[Frame]) -> BandAnalysis:
        """Analyze one frame. Empty or malformed frames come back as silence."""
        if frame is None or frame.is_empty:
            return self._silence()

        if frame.domain is FrameDomain.TIME:
            energies = self.time_domain_energies(frame.data)
        else:
            energies = self.spectral_energies(frame.data, frame.sample_rate)

        if not all(np.isfinite((energies.bass, energies.mid, energies.high))):
            logger.debug("Non-finite band energies, treating frame as silence")
            return self._silence()

        return BandAnalysis(
            energies=energies,
            ratios=self.ratios(energies),
            loudness=self.loudness(energies),
            silent=energies.total <= RATIO_EPSILON,
        )

    def analyze_pcm_bytes(
        self, pcm_data: bytes, channels: int = 1, sample_rate: Optional[int] = None
    ) -> BandAnalysis:
        """Analyze raw little-endian 16-bit PCM (stereo is downmixed)."""
        return self.analyze(from_pcm_bytes(pcm_data, channels, sample_rate))

    def time_domain_energies(self, samples: np.ndarray) -> BandEnergies:
        """RMS of the low/mid/high thirds of a sample block."""
        samples = np.asarray(samples, dtype=np.float64).ravel()
        n = samples.size // 3
        if n == 0:
            # Fewer than three samples: no partitioning is meaningful
            return BandEnergies()

        return BandEnergies(
            bass=_rms(samples[:n]),
            mid=_rms(samples[n : 2 * n]),
            high=_rms(samples[2 * n :]),
        )

    def spectral_energies(
        self, magnitudes: np.ndarray, sample_rate: Optional[int] = None
    ) -> BandEnergies:
        """Sum of spectral magnitudes below/inside/above the crossovers."""
        magnitudes = np.asarray(magnitudes, dtype=np.float64).ravel()
        bins = magnitudes.size
        if bins == 0:
            return BandEnergies()

        nyquist = self.nyquist_for(sample_rate)
        bass_end, mid_end = self.band_edges(bins, nyquist)

        return BandEnergies(
            bass=float(np.sum(magnitudes[:bass_end])),
            mid=float(np.sum(magnitudes[bass_end:mid_end])),
            high=float(np.sum(magnitudes[mid_end:])),
        )

    def nyquist_for(self, sample_rate: Optional[int]) -> int:
        if sample_rate is None or sample_rate <= 0:
            return self.default_nyquist
        return max(1, int(sample_rate) // 2)

    def band_edges(self, bins: int, nyquist: int) -> tuple:
        """Bin indices where the bass and mid ranges end."""
        bass_end = min(bins, bins * self.BASS_CUTOFF_HZ // nyquist)
        mid_end = min(bins, max(bass_end, bins * self.MID_CUTOFF_HZ // nyquist))
        return bass_end, mid_end

    def loudness(self, energies: BandEnergies) -> float:
        """Weighted energy scaled to [0, 1]."""
        wb, wm, wh = self.weights
        weighted = wb * energies.bass + wm * energies.mid + wh * energies.high
        return float(min(1.0, max(0.0, weighted / self.full_scale)))

    @staticmethod
    def ratios(energies: BandEnergies) -> BandRatios:
        total = energies.total
        if total <= RATIO_EPSILON:
            return BandRatios()
        total += RATIO_EPSILON
        return BandRatios(
            bass=energies.bass / total,
            mid=energies.mid / total,
            high=energies.high / total,
        )

    @staticmethod
    def _silence() -> BandAnalysis:
        return BandAnalysis(
            energies=BandEnergies(), ratios=BandRatios(), loudness=0.0, silent=True
        )


def _rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples * samples)))
