"""
Perceptual amplitude mapping.

Turns the analyzer's loudness scalar into a vibration amplitude:

1. Adaptive noise gate - a slow EMA of the ambient level becomes the
   baseline, and only frames above it by a fixed margin open the gate.
2. Two-segment compression curve - quiet passages are pressed down hard,
   loud ones expand toward full strength.
3. First-order low-pass across frames to stop amplitude chatter.

The mapper holds no state of its own. ``step`` takes the previous
``MapperState`` and returns the next one, so the same mapper can be
driven from a polling worker or a capture callback.
"""

from dataclasses import dataclass, replace

MAX_AMPLITUDE = 255


@dataclass(frozen=True)
class MapperState:
    """Per-engine mapping context carried from frame to frame."""

    noise_floor: float = 0.0
    smoothed_norm: float = 0.0


@dataclass(frozen=True)
class MappedFrame:
    """Mapper output for one frame."""

    gate_open: bool
    amplitude: int      # 0-255
    smoothed: float     # Smoothed intensity (0-1)
    norm: float         # Compressed, unsmoothed intensity (0-1)
    loudness: float     # Input scalar


class PerceptualMapper:
    """
    Noise gate, compression curve and smoothing for one loudness stream.

    Attributes:
        gate_margin: How far above the noise floor a frame must be to open the gate
        floor_alpha: EMA weight of the newest sample in the noise floor
        breakpoint: Loudness where the curve switches segments
        low_exponent: Exponent of the quiet segment
        high_exponent: Exponent of the loud segment
        low_scale: Curve output at the breakpoint
        smoothing: Weight of the newest value in the output low-pass
    """

    def __init__(
        self,
        gate_margin: float = 0.02,
        floor_alpha: float = 0.01,
        breakpoint: float = 0.25,
        low_exponent: float = 3.5,
        high_exponent: float = 7.0,
        low_scale: float = 0.4,
        smoothing: float = 0.3,
    ):
        if not 0.0 < breakpoint < 1.0:
            raise ValueError(f"breakpoint must be in (0, 1), got: {breakpoint}")
        if not 0.0 < floor_alpha <= 1.0:
            raise ValueError(f"floor_alpha must be in (0, 1], got: {floor_alpha}")
        if not 0.0 < smoothing <= 1.0:
            raise ValueError(f"smoothing must be in (0, 1], got: {smoothing}")
        if not 0.0 <= low_scale <= 1.0:
            raise ValueError(f"low_scale must be in [0, 1], got: {low_scale}")
        if low_exponent <= 0 or high_exponent <= 0:
            raise ValueError("Curve exponents must be positive")
        if gate_margin < 0:
            raise ValueError(f"gate_margin must not be negative, got: {gate_margin}")

        self.gate_margin = gate_margin
        self.floor_alpha = floor_alpha
        self.breakpoint = breakpoint
        self.low_exponent = low_exponent
        self.high_exponent = high_exponent
        self.low_scale = low_scale
        self.smoothing = smoothing

    @classmethod
    def from_config(cls, config) -> "PerceptualMapper":
        """Build from a ``config.MapperConfig``."""
        return cls(
            gate_margin=config.gate_margin,
            floor_alpha=config.floor_alpha,
            breakpoint=config.breakpoint,
            low_exponent=config.low_exponent,
            high_exponent=config.high_exponent,
            low_scale=config.low_scale,
            smoothing=config.smoothing,
        )

    def step(self, loudness: float, state: MapperState, user_scale: float = 1.0):
        """
        Map one frame.

        Args:
            loudness: Analyzer loudness scalar (clamped to 0-1)
            state: State after the previous frame
            user_scale: User intensity multiplier applied before quantizing

        Returns:
            Tuple of (new_state, MappedFrame)
        """
        x = min(1.0, max(0.0, float(loudness)))

        # Gate test uses the floor as it was before this frame
        threshold = state.noise_floor + self.gate_margin
        gate_open = x >= threshold

        target = threshold if gate_open else x
        noise_floor = (1.0 - self.floor_alpha) * state.noise_floor + self.floor_alpha * target

        if not gate_open:
            new_state = replace(state, noise_floor=noise_floor)
            return new_state, MappedFrame(
                gate_open=False,
                amplitude=0,
                smoothed=state.smoothed_norm,
                norm=0.0,
                loudness=x,
            )

        norm = self.compress(x)
        smoothed = self.smoothing * norm + (1.0 - self.smoothing) * state.smoothed_norm

        new_state = MapperState(noise_floor=noise_floor, smoothed_norm=smoothed)
        return new_state, MappedFrame(
            gate_open=True,
            amplitude=to_amplitude(smoothed, user_scale),
            smoothed=smoothed,
            norm=norm,
            loudness=x,
        )

    def compress(self, x: float) -> float:
        """Two-segment curve; both segments meet at (breakpoint, low_scale)."""
        t = self.breakpoint
        if x < t:
            return (x / t) ** self.low_exponent * self.low_scale
        return self.low_scale + ((x - t) / (1.0 - t)) ** self.high_exponent * (1.0 - self.low_scale)


def to_amplitude(intensity: float, user_scale: float = 1.0) -> int:
    """Quantize an intensity to an actuator amplitude in [0, 255]."""
    amp = int(round(intensity * user_scale * MAX_AMPLITUDE))
    return max(0, min(MAX_AMPLITUDE, amp))
