"""
Haptic Processor
Real-time music-to-vibration engine.
"""

from .analyzer import BandAnalysis, BandAnalyzer, BandEnergies, BandRatios
from .config import EngineConfig, MapperConfig, SynthConfig, get_preset, list_presets
from .engine import EngineMode, EngineStatus, HapticEngine, select_mode
from .frames import Frame, FrameDomain
from .mapper import MapperState, MappedFrame, PerceptualMapper
from .ringbuffer import FrameQueue
from .synthesizer import (
    AmplitudePolicy,
    CompositeEffect,
    ContinuousEffect,
    EffectSynthesizer,
    FallbackPulse,
    OneShotEffect,
    PredefinedEffect,
    Pulse,
)

__all__ = [
    'HapticEngine',
    'EngineMode',
    'EngineStatus',
    'select_mode',
    'EngineConfig',
    'MapperConfig',
    'SynthConfig',
    'get_preset',
    'list_presets',
    'Frame',
    'FrameDomain',
    'FrameQueue',
    'BandAnalyzer',
    'BandAnalysis',
    'BandEnergies',
    'BandRatios',
    'PerceptualMapper',
    'MapperState',
    'MappedFrame',
    'EffectSynthesizer',
    'AmplitudePolicy',
    'FallbackPulse',
    'ContinuousEffect',
    'CompositeEffect',
    'OneShotEffect',
    'PredefinedEffect',
    'Pulse',
]
