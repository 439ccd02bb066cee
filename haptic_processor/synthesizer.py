"""
Effect synthesis - turns mapped intensity and band ratios into actuator requests.

Two shapes of output:

- Continuous: a repeating waveform at one amplitude, re-issued only when the
  amplitude moves by more than a hysteresis delta.
- Composite: one weighted pulse per dominant band, combined into a single
  effect when the actuator can play it, otherwise collapsed to one pulse.

Like the mapper, the synthesizer is stateless; ``SynthState`` goes in and
comes back out with each decision.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from haptic_processor.analyzer import BandRatios
from haptic_processor.mapper import MAX_AMPLITUDE, MappedFrame, to_amplitude

logger = logging.getLogger(__name__)


class BandKind(Enum):
    """Band a pulse is tagged with."""

    BASS = "bass"
    MID = "mid"
    HIGH = "high"


class FallbackPulse(Enum):
    """What to play when the actuator cannot render a composite."""

    SCALED = "scaled"           # One pulse at max_ratio * amplitude
    PREDEFINED = "predefined"   # Platform heavy-click effect
    FIXED = "fixed"             # One pulse at full amplitude, fixed duration


class AmplitudePolicy(Enum):
    """How loudness and band ratios share a composite frame."""

    COMBINED = "combined"  # Loudness drives amplitude, ratios drive the pattern
    RATIO = "ratio"        # Ratios alone drive both


@dataclass(frozen=True)
class Pulse:
    """One primitive inside a composite effect."""

    band: BandKind
    primitive: str
    strength: float   # 0-1
    offset_ms: int


@dataclass(frozen=True)
class ContinuousEffect:
    """Repeating waveform at a single amplitude."""

    amplitude: int
    period_ms: int


@dataclass(frozen=True)
class CompositeEffect:
    """Several band-tagged pulses played as one effect."""

    pulses: Tuple[Pulse, ...]

    @property
    def bands(self) -> Tuple[BandKind, ...]:
        return tuple(p.band for p in self.pulses)


@dataclass(frozen=True)
class OneShotEffect:
    """Single pulse of fixed amplitude and duration."""

    amplitude: int
    duration_ms: int


@dataclass(frozen=True)
class PredefinedEffect:
    """Platform-provided effect referenced by name."""

    name: str


Effect = Union[ContinuousEffect, CompositeEffect, OneShotEffect, PredefinedEffect]

HEAVY_CLICK = "heavy_click"

# Pulse shape and placement per band: (band, primitive, offset_ms)
PULSE_LAYOUT = (
    (BandKind.BASS, "sustained", 0),
    (BandKind.MID, "spin", 50),
    (BandKind.HIGH, "tick", 100),
)


@dataclass(frozen=True)
class SynthState:
    """Continuous-mode output context."""

    looping: bool = False
    last_amplitude: int = 0


@dataclass(frozen=True)
class Decision:
    """What the actuator should do for this frame."""

    effect: Optional[Effect] = None
    cancel: bool = False

    @property
    def is_noop(self) -> bool:
        return self.effect is None and not self.cancel


NOOP = Decision()


class EffectSynthesizer:
    """
    Builds actuator requests from mapped frames.

    Attributes:
        min_amplitude: Continuous amplitudes below this stop the loop
        hysteresis: Minimum amplitude change before a loop is re-issued
        dominance_threshold: Ratio a band must strictly exceed to get a pulse
        period_ms: Continuous waveform period / scaled pulse duration
        fallback: Composite fallback strategy
        fixed_pulse_ms: Duration of FIXED fallback pulses
    """

    def __init__(
        self,
        min_amplitude: int = 15,
        hysteresis: int = 5,
        dominance_threshold: float = 0.2,
        period_ms: int = 30,
        fallback: FallbackPulse = FallbackPulse.SCALED,
        fixed_pulse_ms: int = 20,
    ):
        if not 0 <= min_amplitude <= MAX_AMPLITUDE:
            raise ValueError(f"min_amplitude must be in [0, 255], got: {min_amplitude}")
        if hysteresis < 0:
            raise ValueError(f"hysteresis must not be negative, got: {hysteresis}")
        if not 0.0 <= dominance_threshold < 1.0:
            raise ValueError(
                f"dominance_threshold must be in [0, 1), got: {dominance_threshold}"
            )
        if period_ms <= 0 or fixed_pulse_ms <= 0:
            raise ValueError("Effect durations must be positive")

        self.min_amplitude = min_amplitude
        self.hysteresis = hysteresis
        self.dominance_threshold = dominance_threshold
        self.period_ms = period_ms
        self.fallback = FallbackPulse(fallback)
        self.fixed_pulse_ms = fixed_pulse_ms

    @classmethod
    def from_config(cls, config, period_ms: int) -> "EffectSynthesizer":
        """Build from a ``config.SynthConfig``."""
        return cls(
            min_amplitude=config.min_amplitude,
            hysteresis=config.hysteresis,
            dominance_threshold=config.dominance_threshold,
            period_ms=period_ms,
            fallback=FallbackPulse(config.fallback),
            fixed_pulse_ms=config.fixed_pulse_ms,
        )

    # ------------------------------------------------------------------
    # Continuous
    # ------------------------------------------------------------------

    def continuous(self, mapped: MappedFrame, state: SynthState) -> Tuple[SynthState, Decision]:
        """
        Decide whether to start, update, stop or leave the waveform loop.

        Returns:
            Tuple of (new_state, Decision)
        """
        if not mapped.gate_open or mapped.amplitude < self.min_amplitude:
            return self.stop(state)

        amp = mapped.amplitude
        if state.looping and abs(amp - state.last_amplitude) <= self.hysteresis:
            return state, NOOP

        effect = ContinuousEffect(amplitude=amp, period_ms=self.period_ms)
        return SynthState(looping=True, last_amplitude=amp), Decision(effect=effect)

    @staticmethod
    def stop(state: SynthState) -> Tuple[SynthState, Decision]:
        """Cancel an active loop; nothing to do if none is running."""
        if not state.looping:
            return state, NOOP
        return replace(state, looping=False), Decision(cancel=True)

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    def pulses(self, ratios: BandRatios, intensity: float = 1.0) -> Tuple[Pulse, ...]:
        """One pulse per band whose ratio strictly exceeds the dominance threshold."""
        values = {
            BandKind.BASS: ratios.bass,
            BandKind.MID: ratios.mid,
            BandKind.HIGH: ratios.high,
        }
        intensity = min(1.0, max(0.0, intensity))
        result = []
        for band, primitive, offset_ms in PULSE_LAYOUT:
            ratio = values[band]
            if ratio > self.dominance_threshold:
                strength = min(1.0, max(0.0, ratio * intensity))
                result.append(
                    Pulse(band=band, primitive=primitive, strength=strength, offset_ms=offset_ms)
                )
        return tuple(result)

    def composite(
        self,
        ratios: BandRatios,
        amplitude: int,
        supports_pattern: Callable[[Tuple[BandKind, ...]], bool],
        intensity: float = 1.0,
        supports_predefined: Optional[Callable[[str], bool]] = None,
    ) -> Decision:
        """
        Build a composite effect, or a single-pulse fallback.

        Args:
            ratios: Normalized band ratios for the frame
            amplitude: Overall amplitude (0-255) used by the fallbacks
            supports_pattern: Actuator capability check for a band set
            intensity: Multiplier folded into pulse strengths (0-1)
            supports_predefined: Actuator check for named platform effects

        Returns:
            Decision with the effect to play, or a no-op
        """
        pulses = self.pulses(ratios, intensity)
        if pulses:
            bands = tuple(p.band for p in pulses)
            try:
                supported = bool(supports_pattern(bands))
            except Exception as e:
                logger.debug(f"Pattern capability check failed: {e}")
                supported = False
            if supported:
                return Decision(effect=CompositeEffect(pulses=pulses))

        return self._fallback(ratios, amplitude, supports_predefined)

    def _fallback(
        self,
        ratios: BandRatios,
        amplitude: int,
        supports_predefined: Optional[Callable[[str], bool]],
    ) -> Decision:
        if self.fallback is FallbackPulse.PREDEFINED:
            if supports_predefined is not None and supports_predefined(HEAVY_CLICK):
                if amplitude > 0:
                    return Decision(effect=PredefinedEffect(name=HEAVY_CLICK))
                return NOOP
            # Platform effect unavailable - size the pulse instead
            return self._scaled_pulse(ratios, amplitude)

        if self.fallback is FallbackPulse.FIXED:
            amp = max(0, min(MAX_AMPLITUDE, int(amplitude)))
            if amp <= 0:
                return NOOP
            return Decision(effect=OneShotEffect(amplitude=amp, duration_ms=self.fixed_pulse_ms))

        return self._scaled_pulse(ratios, amplitude)

    def _scaled_pulse(self, ratios: BandRatios, amplitude: int) -> Decision:
        amp = to_amplitude(ratios.maximum * amplitude / MAX_AMPLITUDE)
        if amp <= 0:
            return NOOP
        return Decision(effect=OneShotEffect(amplitude=amp, duration_ms=self.period_ms))
