"""
Architecture:

1. Generators: oscillator, noise, FM and Karplus-Strong sources per layer
2. Layer chain and mixer: filter, saturation, envelopes, LFO routing
3. Effects: EQ, distortion, compressor, chorus, delay, reverb, gate
4. Renderer: frame count, effects, sanitising and peak normalization
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .audio import CHANNELS, SAMPLE_RATE, FloatArray, ensure_audio_contract
from .config import SoundConfig
from .dsp import Signal
from .effects import apply_effects
from .generators import GeneratorContext
from .layers import render_dry

_LOGGER = logging.getLogger("layersynth.synth")

NORMALIZE_PEAK = 0.95


def frame_count(duration: float, sample_rate: int = SAMPLE_RATE) -> int:
    """``ceil(duration * sample_rate)``, ignoring float noise in the product."""

    return max(0, math.ceil(round(duration * sample_rate, 6)))


def normalize_peak(signal: Signal, peak: float = NORMALIZE_PEAK) -> Signal:
    """Scale so the largest absolute sample equals ``peak``; silence stays silent."""

    current = float(np.max(np.abs(signal))) if signal.size else 0.0
    if current <= 0.0:
        return signal
    return signal * (peak / current)


def render_buffer(
    config: SoundConfig,
    rng: np.random.Generator | None = None,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> FloatArray:
    """Render a canonical config to a (2, ceil(duration * sample_rate)) float32 buffer.

    ``rng`` drives every random source (noise layers, plucks, reverb impulse,
    random LFO); pass a seeded generator for repeatable output.
    """

    generator = rng if rng is not None else np.random.default_rng()
    frames = frame_count(config.duration, sample_rate)
    ctx = GeneratorContext(
        frames=frames,
        duration=config.duration,
        rng=generator,
        sample_rate=sample_rate,
    )
    _LOGGER.debug(
        "rendering %r: %d layers, %d frames", config.metadata.name, len(config.layers), frames
    )

    signal = render_dry(config, ctx)
    signal = apply_effects(signal, config.effects, generator, sample_rate)
    signal = np.nan_to_num(signal, nan=0.0, posinf=0.0, neginf=0.0)
    if config.dynamics.normalize:
        signal = normalize_peak(signal)
    buffer = ensure_audio_contract(signal)
    assert buffer.shape == (CHANNELS, frames)
    return buffer
