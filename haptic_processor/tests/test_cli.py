"""Tests for the hapticvibe command line."""

import argparse
import threading
import json

import numpy as np
import pytest
from scipy.io import wavfile

from haptic_processor.cli import (
    build_parser,
    load_wav,
    main,
    resolve_config,
    validate_non_negative_int,
    validate_positive_int,
    validate_scale,
)

# ---------------------------------------------------------------------------
# Argument validators
# ---------------------------------------------------------------------------


class TestValidators:
    def test_positive_int(self):
        assert validate_positive_int("30") == 30

    @pytest.mark.parametrize("value", ["0", "-3", "abc", "1.5"])
    def test_positive_int_rejects(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            validate_positive_int(value)

    def test_non_negative_int(self):
        assert validate_non_negative_int("0") == 0

    def test_non_negative_int_rejects(self):
        with pytest.raises(argparse.ArgumentTypeError):
            validate_non_negative_int("-1")

    @pytest.mark.parametrize("value,expected", [("0", 0.0), ("0.7", 0.7), ("5", 5.0)])
    def test_scale(self, value, expected):
        assert validate_scale(value) == expected

    @pytest.mark.parametrize("value", ["-0.1", "5.5", "loud"])
    def test_scale_rejects(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            validate_scale(value)


# ---------------------------------------------------------------------------
# Configuration merging
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch):
    for name in (
        "HAPTIC_USER_SCALE",
        "HAPTIC_FRAME_MS",
        "HAPTIC_QUEUE_CAPACITY",
        "HAPTIC_FORCE_FALLBACK",
        "HAPTIC_AMPLITUDE_POLICY",
    ):
        monkeypatch.delenv(name, raising=False)


class TestResolveConfig:
    def test_defaults(self, clean_env):
        config = resolve_config(build_parser().parse_args(["song.wav"]))
        assert config.user_scale == 0.7
        assert config.session_id == 0

    def test_preset_then_flags(self, clean_env):
        args = build_parser().parse_args(
            ["song.wav", "--preset", "punchy", "--scale", "2", "--session", "3", "--policy", "ratio"]
        )
        config = resolve_config(args)
        assert config.frame_ms == 20  # From the preset
        assert config.user_scale == 2.0
        assert config.session_id == 3
        assert config.amplitude_policy == "ratio"

    def test_env_between_preset_and_flags(self, clean_env, monkeypatch):
        monkeypatch.setenv("HAPTIC_USER_SCALE", "1.1")
        monkeypatch.setenv("HAPTIC_FRAME_MS", "25")
        args = build_parser().parse_args(["song.wav", "--frame-ms", "40"])
        config = resolve_config(args)
        assert config.user_scale == 1.1
        assert config.frame_ms == 40

    def test_config_file(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"queue_capacity": 8, "synth": {"hysteresis": 2}}))
        config = resolve_config(build_parser().parse_args(["song.wav", "-c", str(path)]))
        assert config.queue_capacity == 8
        assert config.synth.hysteresis == 2

    def test_invalid_config_file(self, clean_env, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"frame_ms": -5}))
        with pytest.raises(ValueError):
            resolve_config(build_parser().parse_args(["song.wav", "-c", str(path)]))


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


@pytest.fixture()
def song(tmp_path):
    """Half a second of silence followed by a loud bass tone."""
    sample_rate = 22050
    t = np.arange(sample_rate // 2) / sample_rate
    tone = (np.sin(2 * np.pi * 80 * t) * 20000).astype(np.int16)
    data = np.concatenate([np.zeros(sample_rate // 2, dtype=np.int16), tone])
    path = tmp_path / "song.wav"
    wavfile.write(str(path), sample_rate, data)
    return path


class TestLoadWav:
    def test_mono_int16(self, song):
        sample_rate, samples = load_wav(song)
        assert sample_rate == 22050
        assert samples.dtype == np.int16
        assert samples.size == 22050

    def test_stereo_float(self, tmp_path):
        path = tmp_path / "stereo.wav"
        data = np.stack([np.full(100, 0.5), np.full(100, -0.5)], axis=1).astype(np.float32)
        wavfile.write(str(path), 8000, data)
        sample_rate, samples = load_wav(path)
        assert sample_rate == 8000
        assert samples.shape == (100,)
        assert np.all(samples == 0)


class TestMain:
    def test_list_presets(self, capsys):
        assert main(["--list-presets"]) == 0
        out = capsys.readouterr().out
        for name in ("default", "gentle", "punchy", "bass_heavy"):
            assert name in out

    def test_wav_required(self):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 2

    def test_missing_file(self, clean_env, tmp_path, capsys):
        assert main([str(tmp_path / "nope.wav"), "--quiet"]) == 1
        assert "Could not read" in capsys.readouterr().err

    def test_invalid_config(self, clean_env, tmp_path, song, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"amplitude_policy": "loudest"}))
        assert main([str(song), "-c", str(path), "--quiet"]) == 2
        assert "Invalid configuration" in capsys.readouterr().err

    def test_continuous_run(self, clean_env, song, capsys):
        assert main([str(song), "--fast", "--stats", "--quiet", "--scale", "1.0"]) == 0
        out = capsys.readouterr().out
        assert "engine:" in out
        assert "'effects_issued': 0" not in out

    def test_composite_run(self, clean_env, song, capsys):
        code = main(
            [str(song), "--fast", "--stats", "--quiet", "--session", "1", "--policy", "ratio"]
        )
        assert code == 0
        assert "'frames_processed': 0," not in capsys.readouterr().out

    def test_invalid_nested_config(self, clean_env, tmp_path, song, capsys):
        """A bad mapper section is rejected up front and leaves no capture thread behind."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"mapper": {"breakpoint": 1.5}}))

        code = main([str(song), "-c", str(path), "--session", "1", "--fast", "--quiet"])

        assert code == 2
        assert "Invalid configuration" in capsys.readouterr().err
        assert not any(t.name == "FileSpectralCapture" for t in threading.enumerate())

    def test_realtime_run_processes_every_block(self, clean_env, song, capsys):
        """Blocks still queued when the file ends are processed before shutdown."""
        code = main([str(song), "--stats", "--quiet", "--block-size", "1024"])

        assert code == 0
        # 22050 samples in 1024-sample blocks
        assert "'frames_processed': 22," in capsys.readouterr().out

    def test_composite_combined_run(self, clean_env, song, capsys):
        """Each spectrum is processed with the PCM block it came from."""
        code = main(
            [str(song), "--fast", "--stats", "--quiet", "--session", "1",
             "--scale", "1.0", "--block-size", "1024"]
        )

        assert code == 0
        out = capsys.readouterr().out
        assert "'frames_processed': 22," in out
        assert "'effects_issued': 0," not in out
        assert "'frames_skipped': 0," in out
