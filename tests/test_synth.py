from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from layersynth.canonicalize import canonicalize
from layersynth.config import DEFAULT_SOUND_CONFIG
from layersynth.synth import NORMALIZE_PEAK, frame_count, normalize_peak, render_buffer

SR = 44_100


def _rms(signal: np.ndarray) -> float:
    return float(np.sqrt(np.mean(np.asarray(signal, dtype=np.float64) ** 2)))


@pytest.mark.parametrize(
    ("duration", "frames"), [(0.5, 22_050), (0.1, 4_410), (1.23, 54_243), (1.0, 44_100)]
)
def test_frame_count(duration: float, frames: int) -> None:
    assert frame_count(duration) == frames


@pytest.mark.parametrize("duration", [0.1, 0.5, 1.23])
def test_buffer_shape(duration: float) -> None:
    config = canonicalize({"timing": {"duration": duration}})
    buffer = render_buffer(config, np.random.default_rng(0))
    assert buffer.shape == (2, frame_count(duration))
    assert buffer.dtype == np.float32


def test_default_sound_is_a_normalized_a440() -> None:
    buffer = render_buffer(DEFAULT_SOUND_CONFIG, np.random.default_rng(0))
    assert float(np.max(np.abs(buffer))) == pytest.approx(NORMALIZE_PEAK, abs=1e-6)
    assert abs(float(buffer[0, 0])) < 1e-6
    spectrum = np.abs(np.fft.rfft(buffer[0]))
    peak_hz = np.argmax(spectrum) * SR / buffer.shape[1]
    assert peak_hz == pytest.approx(440.0, abs=1.0)


def test_everything_at_once_stays_in_range() -> None:
    document: dict[str, Any] = {
        "layers": [
            {
                "type": "oscillator",
                "gain": 0.6,
                "oscillator": {
                    "waveform": "sawtooth",
                    "frequency": 110,
                    "unison": {"voices": 4, "detune": 20, "spread": 0.8},
                    "sub": {"level": 0.5, "octave": -2, "waveform": "square"},
                },
                "filter": {
                    "type": "lowpass",
                    "frequency": 600,
                    "q": 8,
                    "envelope": {"attack": 0.01, "decay": 0.2, "sustain": 0.3, "release": 0.1, "amount": 4000},
                },
                "saturation": {"type": "tube", "drive": 6, "mix": 0.8},
                "envelope": {"attack": 0.005, "decay": 0.1, "sustain": 0.7, "release": 0.1},
            },
            {"type": "noise", "gain": 0.3, "noise": {"type": "pink"}},
            {"type": "fm", "fm": {"carrier": 220, "ratio": 3, "modulation_index": 1, "feedback": 0.4, "modulates_layer": 3}},
            {"type": "fm", "gain": 0.5, "fm": {"carrier": 220, "ratio": 1.5, "envelope": {"decay": 0.2, "sustain": 0.1}}},
            {"type": "karplus-strong", "gain": 0.7, "karplus": {"frequency": 330, "damping": 0.2, "pluck_position": 0.2}},
        ],
        "filter": {"type": "peaking", "frequency": 2000, "q": 2, "gain": 6},
        "lfo": {"waveform": "triangle", "frequency": 4, "depth": 0.5, "target": "pan", "delay": 0.05, "fade": 0.1},
        "effects": {
            "eq": {"low": 3, "mid": -2, "high": 4},
            "distortion": {"type": "fuzz", "amount": 0.4, "mix": 0.3},
            "compressor": {"threshold": -18, "ratio": 4},
            "chorus": {"rate": 2, "depth": 0.6, "mix": 0.4},
            "delay": {"time": 0.08, "feedback": 0.95, "mix": 0.3},
            "reverb": {"decay": 1.2, "mix": 0.25},
            "gate": {"attack": 0.001, "hold": 0.3, "release": 0.1},
        },
        "timing": {"duration": 0.5},
        "dynamics": {"velocity": 1.0},
    }
    buffer = render_buffer(canonicalize(document), np.random.default_rng(4))
    assert buffer.shape == (2, frame_count(0.5))
    assert np.all(np.isfinite(buffer))
    assert float(np.max(np.abs(buffer))) <= 1.0
    assert float(np.max(np.abs(buffer))) == pytest.approx(NORMALIZE_PEAK, abs=1e-6)


@pytest.mark.parametrize("target", ["pitch", "filter", "amplitude", "pan"])
def test_every_lfo_target_renders(target: str) -> None:
    config = canonicalize(
        {
            "filter": {"frequency": 1500},
            "lfo": {"target": target, "frequency": 6, "depth": 0.8},
            "timing": {"duration": 0.2},
        }
    )
    buffer = render_buffer(config, np.random.default_rng(0))
    assert np.all(np.isfinite(buffer))


def test_filter_lfo_without_filter_is_ignored() -> None:
    plain = canonicalize({"timing": {"duration": 0.2}})
    with_lfo = canonicalize({"lfo": {"target": "filter"}, "timing": {"duration": 0.2}})
    assert np.allclose(
        render_buffer(plain, np.random.default_rng(0)),
        render_buffer(with_lfo, np.random.default_rng(0)),
    )


def test_layers_sum_without_normalization() -> None:
    def _render(layers: list[dict[str, Any]]) -> np.ndarray:
        config = canonicalize(
            {"layers": layers, "dynamics": {"normalize": False, "velocity": 0.5}, "timing": {"duration": 0.5}}
        )
        return render_buffer(config, np.random.default_rng(2))

    tone = {"type": "oscillator", "gain": 0.5, "oscillator": {"frequency": 200}}
    hiss = {"type": "noise", "gain": 0.5}
    both = _rms(_render([tone, hiss]))
    assert both > _rms(_render([tone]))
    assert both > _rms(_render([hiss]))


def test_unnormalized_quiet_sound_is_not_boosted() -> None:
    config = canonicalize(
        {"layers": [{"gain": 0.1}], "dynamics": {"normalize": False}, "timing": {"duration": 0.3}}
    )
    buffer = render_buffer(config, np.random.default_rng(0))
    assert float(np.max(np.abs(buffer))) < 0.1


def test_seeded_render_is_deterministic() -> None:
    config = canonicalize(
        {
            "layers": [{"type": "noise"}, {"type": "karplus-strong"}],
            "lfo": {"waveform": "random", "target": "amplitude"},
            "effects": {"reverb": {"decay": 0.5}},
            "timing": {"duration": 0.3},
        }
    )
    first = render_buffer(config, np.random.default_rng(123))
    second = render_buffer(config, np.random.default_rng(123))
    assert np.array_equal(first, second)


def test_normalize_peak_leaves_silence_alone() -> None:
    silence = np.zeros((2, 10))
    assert np.array_equal(normalize_peak(silence), silence)
    assert float(np.max(np.abs(normalize_peak(np.full((2, 3), 0.1))))) == pytest.approx(NORMALIZE_PEAK)
