"""
Tests for frame decoding and three-band energy analysis.
"""

import numpy as np
import pytest

from haptic_processor.analyzer import BandAnalyzer, BandEnergies
from haptic_processor.frames import (
    Frame,
    FrameDomain,
    from_fft_bytes,
    from_pcm_bytes,
    from_samples,
    magnitudes_from_fft_bytes,
)


@pytest.fixture()
def analyzer():
    return BandAnalyzer()


class TestFrames:
    """Frame construction and decoding."""

    def test_from_samples_copies(self):
        source = np.array([1, 2, 3], dtype=np.int16)
        frame = from_samples(source)
        source[0] = 99
        assert frame.domain is FrameDomain.TIME
        assert frame.data.tolist() == [1, 2, 3]

    def test_from_pcm_bytes_mono(self):
        pcm = np.array([100, -200, 300], dtype="<i2").tobytes()
        frame = from_pcm_bytes(pcm)
        assert frame.data.tolist() == [100, -200, 300]

    def test_from_pcm_bytes_stereo_downmix(self):
        pcm = np.array([100, 300, -50, -150], dtype="<i2").tobytes()
        frame = from_pcm_bytes(pcm, channels=2, sample_rate=48000)
        assert frame.data.tolist() == [200, -100]
        assert frame.sample_rate == 48000

    def test_from_pcm_bytes_odd_length(self):
        """A dangling half-sample is dropped, not an error."""
        pcm = np.array([5], dtype="<i2").tobytes() + b"\x01"
        assert from_pcm_bytes(pcm).data.tolist() == [5]

    def test_magnitudes_from_fft_bytes(self):
        """Interleaved (re, im) signed bytes become hypot magnitudes."""
        data = np.array([3, 4, -6, 8], dtype=np.int8).tobytes()
        mags = magnitudes_from_fft_bytes(data)
        assert mags.tolist() == pytest.approx([5.0, 10.0])

    def test_magnitudes_ignore_trailing_byte(self):
        data = np.array([0, 1, 7], dtype=np.int8).tobytes()
        assert magnitudes_from_fft_bytes(data).tolist() == pytest.approx([1.0])

    def test_empty_fft_bytes(self):
        frame = from_fft_bytes(b"")
        assert frame.domain is FrameDomain.FREQUENCY
        assert frame.is_empty


class TestTimeDomain:
    """RMS of sample thirds."""

    def test_band_rms(self, analyzer):
        samples = np.concatenate([
            np.full(300, 1000),
            np.full(300, -2000),
            np.zeros(300),
        ]).astype(np.int16)

        result = analyzer.analyze(from_samples(samples))

        assert result.energies.bass == pytest.approx(1000.0)
        assert result.energies.mid == pytest.approx(2000.0)
        assert result.energies.high == pytest.approx(0.0)
        assert result.ratios.bass == pytest.approx(1 / 3)
        assert result.ratios.mid == pytest.approx(2 / 3)
        assert result.ratios.high == pytest.approx(0.0)

    def test_loudness_weighting(self, analyzer):
        samples = np.concatenate([
            np.full(300, 1000),
            np.full(300, 2000),
            np.full(300, 4000),
        ]).astype(np.int16)

        result = analyzer.analyze(from_samples(samples))

        expected = (1.5 * 1000 + 2.5 * 2000 + 0.25 * 4000) / 32768.0
        assert result.loudness == pytest.approx(expected)

    def test_loudness_clamped(self, analyzer):
        result = analyzer.analyze(from_samples(np.full(90, 30000, dtype=np.int16)))
        assert result.loudness == 1.0

    def test_last_partition_takes_remainder(self, analyzer):
        """With 10 samples, thirds are [0:3], [3:6], [6:10]."""
        samples = np.array([0, 0, 0, 0, 0, 0, 10, 10, 10, 10], dtype=np.int16)
        energies = analyzer.time_domain_energies(samples)
        assert energies.bass == 0.0
        assert energies.mid == 0.0
        assert energies.high == pytest.approx(10.0)

    def test_pcm_bytes(self, analyzer):
        stereo = np.repeat(np.full(300, 2000, dtype="<i2"), 2)
        result = analyzer.analyze_pcm_bytes(stereo.tobytes(), channels=2, sample_rate=48000)
        assert result.energies.bass == pytest.approx(2000.0)
        assert result.ratios.bass == pytest.approx(1 / 3)

    def test_too_short_is_silence(self, analyzer):
        energies = analyzer.time_domain_energies(np.array([100, 200], dtype=np.int16))
        assert energies == BandEnergies()


class TestFrequencyDomain:
    """Summed spectral magnitudes per band."""

    def test_band_edges_default_nyquist(self, analyzer):
        assert analyzer.band_edges(441, 22050) == (4, 30)

    def test_band_edges_from_sample_rate(self, analyzer):
        nyquist = analyzer.nyquist_for(8000)
        assert nyquist == 4000
        assert analyzer.band_edges(40, nyquist) == (2, 15)

    def test_band_edges_clamped_to_bins(self, analyzer):
        """A low nyquist pushes the mid edge past the last bin."""
        assert analyzer.band_edges(100, 1000) == (20, 100)

    def test_spectral_sums(self, analyzer):
        mags = np.ones(441, dtype=np.float32)
        energies = analyzer.spectral_energies(mags, sample_rate=44100)
        assert energies.bass == pytest.approx(4.0)
        assert energies.mid == pytest.approx(26.0)
        assert energies.high == pytest.approx(411.0)

    def test_unknown_sample_rate_uses_default(self, analyzer):
        mags = np.ones(441, dtype=np.float32)
        assert analyzer.spectral_energies(mags, None) == analyzer.spectral_energies(mags, 44100)

    def test_fft_frame(self, analyzer, spectrum_bytes):
        frame = from_fft_bytes(spectrum_bytes(100, 20, 0), sample_rate=44100)
        result = analyzer.analyze(frame)

        assert result.energies.bass == pytest.approx(400.0)
        assert result.energies.mid == pytest.approx(520.0)
        assert result.energies.high == pytest.approx(0.0)
        assert result.ratios.bass == pytest.approx(400 / 920)


class TestRatios:
    """Normalized band ratios."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_ratios_sum_to_one(self, analyzer, seed):
        rng = np.random.default_rng(seed)
        samples = rng.integers(-32768, 32767, size=1024).astype(np.int16)
        ratios = analyzer.analyze(from_samples(samples)).ratios
        assert ratios.bass + ratios.mid + ratios.high == pytest.approx(1.0, abs=1e-6)

    def test_all_zero_is_uniform(self, analyzer, silent_samples):
        result = analyzer.analyze(from_samples(silent_samples))
        assert result.silent
        assert result.loudness == 0.0
        for ratio in (result.ratios.bass, result.ratios.mid, result.ratios.high):
            assert ratio == pytest.approx(1 / 3)

    def test_empty_frame_is_silence(self, analyzer):
        result = analyzer.analyze(from_samples([]))
        assert result.silent
        assert result.loudness == 0.0

    def test_none_frame_is_silence(self, analyzer):
        assert analyzer.analyze(None).silent

    def test_non_finite_spectrum_is_silence(self, analyzer):
        mags = np.full(441, np.nan, dtype=np.float32)
        frame = Frame(domain=FrameDomain.FREQUENCY, data=mags, sample_rate=44100)
        result = analyzer.analyze(frame)
        assert result.silent
        assert result.loudness == 0.0


class TestValidation:
    def test_bad_weights(self):
        with pytest.raises(ValueError):
            BandAnalyzer(weights=(1.0, 2.0))

    def test_bad_full_scale(self):
        with pytest.raises(ValueError):
            BandAnalyzer(full_scale=0)
