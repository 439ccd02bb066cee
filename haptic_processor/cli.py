"""
Haptic engine CLI - drive the engine from an audio file.

Entry point:
    hapticvibe    - Stream a WAV file through the engine and print the
                    vibration requests it would send to a motor
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

import numpy as np

from haptic_processor.config import (
    EngineConfig,
    get_preset,
    list_presets,
    load_config,
)
from haptic_processor.logging_config import configure_logging

logger = logging.getLogger(__name__)

# Fix Windows console encoding for unicode characters
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")


def validate_positive_int(value: str) -> int:
    """Validate positive integer."""
    try:
        num = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer: {value}")

    if num <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got: {num}")
    return num


def validate_non_negative_int(value: str) -> int:
    """Validate integer >= 0."""
    try:
        num = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer: {value}")

    if num < 0:
        raise argparse.ArgumentTypeError(f"Value must not be negative, got: {num}")
    return num


def validate_scale(value: str) -> float:
    """Validate user intensity scale."""
    try:
        scale = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid scale: {value}")

    if not 0.0 <= scale <= 5.0:
        raise argparse.ArgumentTypeError(f"Scale must be between 0 and 5, got: {scale}")
    return scale


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hapticvibe",
        description="Turn music into vibration requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hapticvibe song.wav                    # Raw PCM stream, continuous waveform
  hapticvibe song.wav --session 1        # Spectral capture, composite pulses
  hapticvibe song.wav --preset punchy    # Use a tuned preset
  hapticvibe song.wav --fast --stats     # Process as fast as possible, print counters
  hapticvibe --list-presets
        """,
    )

    parser.add_argument("wav", nargs="?", type=Path, help="16-bit WAV file to play through the engine")
    parser.add_argument(
        "--list-presets", action="store_true", help="List available presets and exit"
    )

    tuning = parser.add_argument_group("Tuning")
    tuning.add_argument(
        "--preset", "-p", type=str, choices=list_presets(), help="Start from a named preset"
    )
    tuning.add_argument("--config", "-c", type=Path, help="JSON configuration file")
    tuning.add_argument(
        "--scale", "-s", type=validate_scale, help="User intensity scale (typical 0.7-2.5)"
    )
    tuning.add_argument(
        "--frame-ms", type=validate_positive_int, help="Worker tick period in milliseconds"
    )
    tuning.add_argument(
        "--queue-capacity", type=validate_positive_int, help="Frame queue capacity"
    )
    tuning.add_argument(
        "--policy",
        choices=["combined", "ratio"],
        help="How loudness and band ratios share a composite frame",
    )

    mode = parser.add_argument_group("Mode")
    mode.add_argument(
        "--session",
        type=validate_non_negative_int,
        default=None,
        help="Audio session id (0 = raw PCM stream, >0 = spectral capture)",
    )
    mode.add_argument(
        "--force-fallback", action="store_true", help="Never use hardware haptic generation"
    )
    mode.add_argument(
        "--block-size",
        type=validate_positive_int,
        default=1024,
        help="Samples per captured block (default: 1024)",
    )
    mode.add_argument(
        "--fast", action="store_true", help="Do not pace playback to the file's sample rate"
    )

    output = parser.add_argument_group("Output")
    output.add_argument("--stats", action="store_true", help="Print engine counters at the end")
    output.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    output.add_argument("--quiet", "-q", action="store_true", help="Errors only")

    return parser


def resolve_config(args) -> EngineConfig:
    """Merge preset, config file, environment and flags (later wins)."""
    if args.config is not None:
        config = load_config(args.config)
    elif args.preset:
        config = get_preset(args.preset)
    else:
        config = EngineConfig()

    config = EngineConfig.from_env(config)

    if args.scale is not None:
        config.user_scale = args.scale
    if args.frame_ms is not None:
        config.frame_ms = args.frame_ms
    if args.queue_capacity is not None:
        config.queue_capacity = args.queue_capacity
    if args.policy is not None:
        config.amplitude_policy = args.policy
    if args.session is not None:
        config.session_id = args.session
    if args.force_fallback:
        config.force_fallback = True

    return config.validate()


def load_wav(path: Path):
    """Read a WAV file as mono int16 samples."""
    from scipy.io import wavfile

    sample_rate, data = wavfile.read(str(path))

    if data.dtype.kind == "f":
        data = np.clip(data, -1.0, 1.0) * 32767.0
    elif data.dtype == np.int32:
        data = data / 65536.0
    elif data.dtype == np.uint8:
        data = (data.astype(np.float32) - 128.0) * 256.0

    if data.ndim > 1:
        data = np.mean(data, axis=1)

    return int(sample_rate), data.astype(np.int16)


def main(argv=None) -> int:
    """
    Main entry point.

    Streams a WAV file through the engine as a live source would and logs
    every actuator request.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_presets:
        for name in list_presets():
            preset = get_preset(name)
            print(
                f"  {name:12} scale={preset.user_scale:<4} frame={preset.frame_ms}ms "
                f"gate=+{preset.mapper.gate_margin} min_amp={preset.synth.min_amplitude}"
            )
        return 0

    if args.wav is None:
        parser.error("a WAV file is required")

    level = "DEBUG" if args.verbose else "ERROR" if args.quiet else None
    configure_logging(level)

    try:
        config = resolve_config(args)
    except (ValueError, OSError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    try:
        sample_rate, samples = load_wav(args.wav)
    except (OSError, ValueError) as e:
        print(f"Could not read {args.wav}: {e}", file=sys.stderr)
        return 1

    return run(config, samples, sample_rate, args)


def run(config: EngineConfig, samples: np.ndarray, sample_rate: int, args) -> int:
    """Play samples through an engine bound to a logging actuator."""
    # Import here to avoid slow startup for --help
    from haptic_processor.capture import ArrayReader, FileSpectralCapture, PcmPump
    from haptic_processor.collaborators import LoggingActuator
    from haptic_processor.engine import EngineMode, HapticEngine

    realtime = not args.fast
    actuator = LoggingActuator()
    capture = None
    if config.session_id > 0:
        # Held until the engine exists so no spectrum arrives without its PCM block
        capture = FileSpectralCapture(
            samples, sample_rate, capture_size=args.block_size, realtime=realtime,
            autostart=False,
        )

    try:
        engine = HapticEngine(actuator, config, capture=capture, start_worker=realtime)
    except ValueError as e:
        if capture is not None:
            capture.release()
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    pump = PcmPump(ArrayReader(samples, sample_rate, realtime=realtime), engine.push,
                   block_size=args.block_size)

    def signal_handler(sig, frame):
        pump.stop()
        engine.release()

    previous = {
        sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }

    duration = samples.size / float(sample_rate)
    logger.info(f"Playing {duration:.1f}s at {sample_rate}Hz, mode={engine.mode.value}")

    try:
        if engine.mode is EngineMode.FALLBACK_COMPOSITE:
            if config.amplitude_policy == "combined":
                # Each spectrum's own PCM block is queued just before it is processed
                capture.set_pcm_sink(engine.push)
            capture.start()
            capture.wait()
        elif realtime:
            pump.start()
            pump.wait()
            engine.drain()
        else:
            # No worker thread: feed and drain synchronously
            reader = ArrayReader(samples, sample_rate, realtime=False)
            block = reader(args.block_size)
            while block is not None and not engine.is_released:
                engine.push(block)
                engine.drain()
                block = reader(args.block_size)
    finally:
        pump.stop()
        engine.release()
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if args.stats:
        print(f"engine: {engine.stats.to_dict()}")
        print(f"queue:  {engine.buffer_stats}")
        print(f"latency: {engine.latency_stats}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
