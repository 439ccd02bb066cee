"""
Haptic engine controller.

Owns the frame queue, the mapping/synthesis state and the thread that
drives them, and decides at construction which path the audio takes:

- HARDWARE_ACCELERATED: the platform turns audio into haptics itself;
  the software pipeline is bypassed entirely.
- FALLBACK_CONTINUOUS: session-less PCM stream; a worker thread polls the
  frame queue every ``frame_ms`` and drives a continuous waveform.
- FALLBACK_COMPOSITE: bound to an audio session with spectral capture;
  each capture callback is processed synchronously into band pulses.

Usage:
    engine = HapticEngine(actuator, EngineConfig(session_id=0))
    engine.push(samples)      # from the capture thread
    ...
    engine.pause()
    engine.resume()
    engine.release()
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

from haptic_processor.analyzer import BandAnalyzer
from haptic_processor.collaborators import (
    Actuator,
    HardwareAccelerator,
    NoAccelerator,
    SpectralCapture,
)
from haptic_processor.config import EngineConfig
from haptic_processor.frames import Frame, FrameDomain, from_fft_bytes, from_samples
from haptic_processor.mapper import MapperState, PerceptualMapper, to_amplitude
from haptic_processor.ringbuffer import FrameQueue
from haptic_processor.synthesizer import (
    NOOP,
    AmplitudePolicy,
    Decision,
    EffectSynthesizer,
    OneShotEffect,
    SynthState,
)

logger = logging.getLogger(__name__)


class EngineMode(Enum):
    """Processing path chosen at construction."""

    HARDWARE_ACCELERATED = "hardware"
    FALLBACK_CONTINUOUS = "continuous"
    FALLBACK_COMPOSITE = "composite"


class EngineStatus(Enum):
    """Lifecycle state."""

    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    PAUSED = "paused"
    RELEASED = "released"


@dataclass
class EngineStats:
    """Counters for engine activity."""

    frames_processed: int = 0
    frames_skipped: int = 0  # Empty/malformed frames and frames lost to errors
    effects_issued: int = 0
    cancels: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "frames_processed": self.frames_processed,
            "frames_skipped": self.frames_skipped,
            "effects_issued": self.effects_issued,
            "cancels": self.cancels,
            "errors": self.errors,
        }


def select_mode(
    hardware_available: bool,
    force_fallback: bool,
    session_id: int,
    capture_available: bool,
) -> EngineMode:
    """
    Pick the processing path.

    Hardware generation attaches to an audio session, so it needs one.
    Without hardware, a session with spectral capture gets composite
    pulses and anything else gets the raw-stream continuous pipeline.
    """
    if hardware_available and not force_fallback and session_id > 0:
        return EngineMode.HARDWARE_ACCELERATED
    if session_id > 0 and capture_available:
        return EngineMode.FALLBACK_COMPOSITE
    return EngineMode.FALLBACK_CONTINUOUS


def scale_from_volume(volume: int, max_volume: int) -> float:
    """User scale that follows the media volume (0 when max_volume is unknown)."""
    if max_volume <= 0:
        return 0.0
    return max(0.0, min(1.0, volume / float(max_volume)))


class HapticEngine:
    """
    Converts an audio stream into vibration requests.

    Processing is strictly sequential: whether frames arrive through the
    worker thread or a capture callback, only one is processed at a time.
    The frame queue is the only structure shared with producers.
    """

    def __init__(
        self,
        actuator: Actuator,
        config: Optional[EngineConfig] = None,
        accelerator: Optional[HardwareAccelerator] = None,
        capture: Optional[SpectralCapture] = None,
        start_worker: bool = True,
    ):
        """
        Initialize the engine and select its mode.

        Args:
            actuator: Vibration output
            config: Engine configuration (defaults if None)
            accelerator: Hardware haptic generator probe (None = unavailable)
            capture: Spectral capture bound to ``config.session_id``
            start_worker: Start the polling thread in continuous mode. With
                False the caller drives the pipeline through ``tick()``.
        """
        self.config = (config or EngineConfig()).validate()
        self.actuator = actuator
        self.accelerator = accelerator or NoAccelerator()
        self.capture = capture

        self.analyzer = BandAnalyzer()
        self.mapper = PerceptualMapper.from_config(self.config.mapper)
        self.amplitude_policy = AmplitudePolicy(self.config.amplitude_policy)
        self.queue = FrameQueue(capacity=self.config.queue_capacity)

        self._user_scale = float(self.config.user_scale)
        self._mapper_state = MapperState()
        self._synth_state = SynthState()
        # Loudness of the newest PCM block; held between blocks in composite mode
        self._pcm_loudness: Optional[float] = None

        # RLock so release() from inside a capture callback does not deadlock
        self._process_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self._stats = EngineStats()
        self._latency_samples: Deque[float] = deque(maxlen=60)

        self._status = EngineStatus.UNINITIALIZED
        # Capture may call back as soon as it is enabled; hold callbacks until ready
        with self._process_lock:
            self._mode = self._initialize()

            period = (
                self.config.composite_frame_ms
                if self._mode is EngineMode.FALLBACK_COMPOSITE
                else self.config.frame_ms
            )
            self.synthesizer = EffectSynthesizer.from_config(self.config.synth, period_ms=period)
            self._status = EngineStatus.RUNNING

        if self._mode is EngineMode.FALLBACK_CONTINUOUS and start_worker:
            self._start_worker()

        logger.info(
            f"Haptic engine ready: mode={self._mode.value}, scale={self._user_scale}",
            extra={"mode": self._mode.value, "session_id": self.config.session_id},
        )

    # ------------------------------------------------------------------
    # Mode selection
    # ------------------------------------------------------------------

    def _probe_hardware(self) -> bool:
        try:
            return bool(self.accelerator.is_available())
        except Exception as e:
            logger.warning(f"Hardware haptics probe failed ({e}), assuming unavailable")
            return False

    def _initialize(self) -> EngineMode:
        cfg = self.config
        capture_available = self.capture is not None
        mode = select_mode(
            self._probe_hardware(), cfg.force_fallback, cfg.session_id, capture_available
        )

        if mode is EngineMode.HARDWARE_ACCELERATED:
            try:
                self.accelerator.enable(cfg.session_id)
                logger.info(f"Hardware haptic generation enabled for session {cfg.session_id}")
                return mode
            except Exception as e:
                logger.warning(f"Hardware haptics init failed ({e}), using software fallback")
                mode = select_mode(False, cfg.force_fallback, cfg.session_id, capture_available)

        if mode is EngineMode.FALLBACK_COMPOSITE:
            try:
                self.capture.set_listener(self.on_spectrum)
                self.capture.set_enabled(True)
                logger.info(f"Spectral capture attached to session {cfg.session_id}")
                return mode
            except Exception as e:
                logger.warning(f"Spectral capture init failed ({e}), using PCM stream fallback")
                self._detach_capture()
                mode = EngineMode.FALLBACK_CONTINUOUS

        return mode

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def push(self, samples, sample_rate: Optional[int] = None) -> bool:
        """
        Queue a block of 16-bit samples. Non-blocking; may evict the oldest frame.

        Returns:
            False if the sample block was ignored or displaced an older frame
        """
        if self._mode is EngineMode.HARDWARE_ACCELERATED:
            return False
        if self._status is EngineStatus.RELEASED:
            return False
        return self.push_frame(from_samples(samples, sample_rate))

    def push_frame(self, frame: Frame) -> bool:
        """Queue an already-built frame."""
        if self._mode is EngineMode.HARDWARE_ACCELERATED:
            return False
        if self._status is EngineStatus.RELEASED:
            return False
        return self.queue.push(frame)

    def on_spectrum(self, fft_bytes: bytes, sample_rate: int = 0) -> Optional[Decision]:
        """
        Spectral capture callback: process one spectrum on the caller's thread.

        The most recent queued PCM block supplies the loudness channel; the
        spectrum supplies the band pattern. Once any PCM block has been seen
        its loudness is held until the next one arrives, so spectra that
        outpace the PCM feed never fall back to the spectral scale.
        """
        with self._process_lock:
            if self._mode is not EngineMode.FALLBACK_COMPOSITE:
                return None
            if self._status is not EngineStatus.RUNNING:
                return None
            rate = sample_rate if sample_rate and sample_rate > 0 else None
            rate = rate or self.config.default_sample_rate
            try:
                frame = from_fft_bytes(fft_bytes, rate)
            except Exception as e:
                logger.debug(f"Malformed spectrum skipped: {e}")
                self._stats.frames_skipped += 1
                return None
            return self.process_frame(frame, loudness_frame=self._latest_time_frame())

    def _latest_time_frame(self) -> Optional[Frame]:
        latest = None
        while True:
            frame = self.queue.pop()
            if frame is None:
                return latest
            if frame.domain is FrameDomain.TIME:
                latest = frame

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """
        Process at most one queued frame.

        Returns:
            True if a frame was taken from the queue
        """
        # Pop under the lock so release() never strands a frame taken from the queue
        with self._process_lock:
            if self._status is not EngineStatus.RUNNING:
                return False
            frame = self.queue.pop()
            if frame is None:
                return False
            self.process_frame(frame)
            return True

    def drain(self) -> int:
        """Process every queued frame now. Returns the number processed."""
        processed = 0
        while self.tick():
            processed += 1
        return processed

    def process_frame(self, frame: Frame, loudness_frame: Optional[Frame] = None) -> Optional[Decision]:
        """
        Run one frame through analyze -> map -> synthesize -> actuate.

        Never raises; failures are logged and the frame is skipped.

        Returns:
            The decision sent to the actuator, or None if the frame was skipped
        """
        with self._process_lock:
            if self._status is not EngineStatus.RUNNING:
                return None
            if self._mode is EngineMode.HARDWARE_ACCELERATED:
                return None
            if frame is None or frame.is_empty:
                self._stats.frames_skipped += 1
                return None

            started = time.perf_counter()
            try:
                if frame.domain is FrameDomain.FREQUENCY:
                    decision = self._process_spectral(frame, loudness_frame)
                else:
                    decision = self._process_continuous(frame)
            except Exception as e:
                logger.warning(f"Frame processing failed, skipping frame: {e}")
                self._stats.errors += 1
                self._stats.frames_skipped += 1
                return None

            self._stats.frames_processed += 1
            self._latency_samples.append((time.perf_counter() - started) * 1000.0)
            return decision

    def _process_continuous(self, frame: Frame) -> Decision:
        analysis = self.analyzer.analyze(frame)
        self._mapper_state, mapped = self.mapper.step(
            analysis.loudness, self._mapper_state, self._user_scale
        )
        synth_state, decision = self.synthesizer.continuous(mapped, self._synth_state)
        if self._dispatch(decision):
            self._synth_state = synth_state
        return decision

    def _process_spectral(self, frame: Frame, loudness_frame: Optional[Frame]) -> Decision:
        analysis = self.analyzer.analyze(frame)
        actuator = self.actuator

        if self.amplitude_policy is AmplitudePolicy.RATIO:
            amplitude = to_amplitude(1.0, self._user_scale)
            intensity = 1.0
        else:
            if loudness_frame is not None and not loudness_frame.is_empty:
                self._pcm_loudness = self.analyzer.analyze(loudness_frame).loudness
            if self._pcm_loudness is not None:
                loudness = self._pcm_loudness
            else:
                loudness = analysis.loudness
            self._mapper_state, mapped = self.mapper.step(
                loudness, self._mapper_state, self._user_scale
            )
            if not mapped.gate_open or mapped.amplitude <= 0:
                return NOOP
            amplitude = mapped.amplitude
            intensity = amplitude / 255.0

        decision = self.synthesizer.composite(
            analysis.ratios,
            amplitude,
            actuator.supports_pattern,
            intensity=intensity,
            supports_predefined=actuator.supports_predefined,
        )
        self._dispatch(decision)
        return decision

    def _dispatch(self, decision: Decision) -> bool:
        """Send a decision to the actuator. Returns False if the actuator failed."""
        if decision.is_noop:
            return True
        try:
            if decision.cancel:
                self.actuator.cancel()
                self._stats.cancels += 1
            effect = decision.effect
            if effect is not None:
                if isinstance(effect, OneShotEffect):
                    self.actuator.one_shot(effect.amplitude, effect.duration_ms)
                else:
                    self.actuator.play_effect(effect)
                self._stats.effects_issued += 1
        except Exception as e:
            logger.warning(f"Actuator request failed: {e}")
            self._stats.errors += 1
            return False
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _start_worker(self):
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run, name="HapticEngineWorker", daemon=True
        )
        self._worker.start()
        logger.debug(f"Worker started, period={self.config.frame_ms}ms")

    def _run(self):
        period = self.config.frame_ms / 1000.0
        while not self._stop_event.wait(period):
            if self._status is not EngineStatus.RUNNING:
                continue
            try:
                self.tick()
            except Exception as e:
                # tick() already guards processing; this keeps the loop alive regardless
                logger.warning(f"Worker tick failed: {e}")
                with self._process_lock:
                    self._stats.errors += 1
        logger.debug("Worker stopped")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def pause(self):
        """Stop output and capture, keeping gate and smoothing state for a warm resume."""
        with self._process_lock:
            if self._status is not EngineStatus.RUNNING:
                return
            self._status = EngineStatus.PAUSED

            if self._mode is EngineMode.HARDWARE_ACCELERATED:
                self._safe_call(self.accelerator, "set_enabled", False)
            elif self._mode is EngineMode.FALLBACK_COMPOSITE:
                self._safe_call(self.capture, "set_enabled", False)

            self._synth_state, _ = EffectSynthesizer.stop(self._synth_state)
            self._safe_call(self.actuator, "cancel")
            logger.info("Haptic engine paused")

    def resume(self):
        """Re-enable capture and output. No-op unless paused."""
        with self._process_lock:
            if self._status is not EngineStatus.PAUSED:
                return

            if self._mode is EngineMode.HARDWARE_ACCELERATED:
                self._safe_call(self.accelerator, "set_enabled", True)
            elif self._mode is EngineMode.FALLBACK_COMPOSITE:
                self._safe_call(self.capture, "set_enabled", True)

            self._status = EngineStatus.RUNNING
            logger.info("Haptic engine resumed")

    def release(self):
        """Stop everything and free resources. Safe to call repeatedly."""
        # Only the check-and-set is locked; joining the worker under the lock would deadlock
        with self._process_lock:
            if self._status is EngineStatus.RELEASED:
                return
            self._status = EngineStatus.RELEASED

        # Worker and capture callbacks go first so nothing touches the actuator after cancel
        self._stop_event.set()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=1.0)
        self._worker = None

        self._detach_capture()

        with self._process_lock:
            if self._mode is EngineMode.HARDWARE_ACCELERATED:
                self._safe_call(self.accelerator, "release")
            self._safe_call(self.actuator, "cancel")
            self.queue.clear()
            self._pcm_loudness = None

        logger.info(
            "Haptic engine released",
            extra={"mode": self._mode.value, "frames_processed": self._stats.frames_processed},
        )

    def _detach_capture(self):
        if self.capture is None:
            return
        self._safe_call(self.capture, "set_enabled", False)
        self._safe_call(self.capture, "set_listener", None)
        self._safe_call(self.capture, "release")

    @staticmethod
    def _safe_call(target, method: str, *args):
        func = getattr(target, method, None)
        if func is None:
            return
        try:
            func(*args)
        except Exception as e:
            logger.debug(f"{type(target).__name__}.{method} failed: {e}")

    def __enter__(self) -> "HapticEngine":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def set_user_scale(self, scale: float):
        """Change the user intensity multiplier; takes effect on the next frame."""
        if scale < 0:
            raise ValueError(f"User scale must not be negative, got: {scale}")
        self._user_scale = float(scale)

    @property
    def user_scale(self) -> float:
        return self._user_scale

    @property
    def mode(self) -> EngineMode:
        return self._mode

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def is_paused(self) -> bool:
        return self._status is EngineStatus.PAUSED

    @property
    def is_released(self) -> bool:
        return self._status is EngineStatus.RELEASED

    @property
    def mapper_state(self) -> MapperState:
        return self._mapper_state

    @property
    def synth_state(self) -> SynthState:
        return self._synth_state

    @property
    def noise_floor(self) -> float:
        return self._mapper_state.noise_floor

    @property
    def smoothed_norm(self) -> float:
        return self._mapper_state.smoothed_norm

    @property
    def stats(self) -> EngineStats:
        return self._stats

    @property
    def buffer_stats(self) -> dict:
        """Frame queue statistics."""
        stats = self.queue.stats
        return {
            "writes": stats.writes,
            "reads": stats.reads,
            "overruns": stats.overruns,
            "underruns": stats.underruns,
            "capacity": stats.capacity,
            "fill": stats.current_fill,
        }

    @property
    def latency_stats(self) -> dict:
        """Per-frame processing time in milliseconds."""
        if len(self._latency_samples) == 0:
            return {"avg": 0, "min": 0, "max": 0, "samples": 0}
        samples = list(self._latency_samples)
        return {
            "avg": sum(samples) / len(samples),
            "min": min(samples),
            "max": max(samples),
            "samples": len(samples),
        }
