"""
Haptic engine configuration.

Provides:
- Type-safe configuration dataclasses for the mapper, synthesizer and engine
- Pre-tuned presets for different listening styles
- Loading/saving from JSON and environment variables
"""

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

from haptic_processor.mapper import PerceptualMapper
from haptic_processor.synthesizer import AmplitudePolicy, EffectSynthesizer, FallbackPulse


@dataclass
class MapperConfig:
    """Noise gate, compression curve and smoothing settings."""

    gate_margin: float = 0.02  # Gate opens this far above the noise floor
    floor_alpha: float = 0.01  # Noise floor EMA weight (~1-2 s to adapt)
    breakpoint: float = 0.25  # Loudness where the curve changes segment
    low_exponent: float = 3.5  # Quiet segment steepness
    high_exponent: float = 7.0  # Loud segment steepness
    low_scale: float = 0.4  # Curve output at the breakpoint
    smoothing: float = 0.3  # Weight of the newest frame in the low-pass

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MapperConfig":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class SynthConfig:
    """Effect synthesis settings."""

    min_amplitude: int = 15  # Continuous loop stops below this
    hysteresis: int = 5  # Amplitude change needed to re-issue the loop
    dominance_threshold: float = 0.2  # Band ratio needed (strictly) for a pulse
    fallback: str = FallbackPulse.SCALED.value
    fixed_pulse_ms: int = 20

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SynthConfig":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class EngineConfig:
    """Complete engine configuration (construction time)."""

    mapper: MapperConfig = field(default_factory=MapperConfig)
    synth: SynthConfig = field(default_factory=SynthConfig)

    # 0 = session-less (raw PCM stream), >0 = bound to a live audio session
    session_id: int = 0
    force_fallback: bool = False

    # User intensity multiplier (typical 0.7-2.5)
    user_scale: float = 0.7

    # Tick period of the continuous worker and effect period (ms)
    frame_ms: int = 30
    # Effect period used for composite pulses (ms)
    composite_frame_ms: int = 10

    queue_capacity: int = 64

    # Spectral capture sample rate assumed when the callback reports none
    default_sample_rate: int = 44100

    amplitude_policy: str = AmplitudePolicy.COMBINED.value

    def validate(self) -> "EngineConfig":
        """Raise ValueError on settings the engine cannot run with."""
        if self.session_id < 0:
            raise ValueError(f"session_id must not be negative, got: {self.session_id}")
        if self.user_scale < 0:
            raise ValueError(f"user_scale must not be negative, got: {self.user_scale}")
        if self.frame_ms <= 0 or self.composite_frame_ms <= 0:
            raise ValueError("Frame periods must be positive")
        if self.queue_capacity <= 0:
            raise ValueError(f"queue_capacity must be positive, got: {self.queue_capacity}")
        if self.default_sample_rate <= 0:
            raise ValueError(
                f"default_sample_rate must be positive, got: {self.default_sample_rate}"
            )
        AmplitudePolicy(self.amplitude_policy)
        # The mapper and synthesizer constructors own the range checks for their sections
        PerceptualMapper.from_config(self.mapper)
        EffectSynthesizer.from_config(
            self.synth, period_ms=min(self.frame_ms, self.composite_frame_ms)
        )
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        """Create from dictionary, ignoring unknown keys."""
        values = {
            k: v
            for k, v in data.items()
            if k in cls.__dataclass_fields__ and k not in ("mapper", "synth")
        }
        config = cls(**values)
        if "mapper" in data:
            config.mapper = MapperConfig.from_dict(data["mapper"])
        if "synth" in data:
            config.synth = SynthConfig.from_dict(data["synth"])
        return config

    @classmethod
    def from_env(cls, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """Overlay environment variables on a base configuration."""
        config = replace(base) if base is not None else cls()
        env = os.environ
        if "HAPTIC_USER_SCALE" in env:
            config.user_scale = float(env["HAPTIC_USER_SCALE"])
        if "HAPTIC_FRAME_MS" in env:
            config.frame_ms = int(env["HAPTIC_FRAME_MS"])
        if "HAPTIC_QUEUE_CAPACITY" in env:
            config.queue_capacity = int(env["HAPTIC_QUEUE_CAPACITY"])
        if "HAPTIC_FORCE_FALLBACK" in env:
            config.force_fallback = env["HAPTIC_FORCE_FALLBACK"].lower() in ("1", "true", "yes")
        if "HAPTIC_AMPLITUDE_POLICY" in env:
            config.amplitude_policy = env["HAPTIC_AMPLITUDE_POLICY"].lower()
        return config

    def save(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load configuration from JSON file (defaults if missing)."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        return cls.from_dict(data)


# Pre-tuned presets
PRESETS: Dict[str, EngineConfig] = {
    "default": EngineConfig(),
    "gentle": EngineConfig(
        mapper=MapperConfig(
            gate_margin=0.03,  # Ignore more ambient noise
            low_exponent=4.0,
            high_exponent=8.0,
            smoothing=0.2,  # Slower, softer swells
        ),
        synth=SynthConfig(min_amplitude=20, hysteresis=8),
        user_scale=0.7,
    ),
    "punchy": EngineConfig(
        mapper=MapperConfig(
            gate_margin=0.015,
            low_exponent=2.5,  # Quiet hits still come through
            high_exponent=5.0,
            smoothing=0.5,  # Fast attack for percussive music
        ),
        synth=SynthConfig(min_amplitude=12, hysteresis=4),
        user_scale=1.2,
        frame_ms=20,
    ),
    "bass_heavy": EngineConfig(
        mapper=MapperConfig(breakpoint=0.3, low_scale=0.45),
        synth=SynthConfig(dominance_threshold=0.15),
        user_scale=1.5,
    ),
}


def get_preset(name: str) -> EngineConfig:
    """Get a copy of a preset by name, returns 'default' if not found."""
    preset = PRESETS.get(name.lower(), PRESETS["default"])
    return EngineConfig.from_dict(preset.to_dict())


def list_presets() -> List[str]:
    """List available preset names."""
    return list(PRESETS.keys())


# Default config file location
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "hapticvibe" / "config.json"


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from file or return defaults."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    return EngineConfig.load(path)


def save_config(config: EngineConfig, path: Optional[Path] = None) -> None:
    """Save configuration to file."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    config.save(path)
