from __future__ import annotations

import logging

import numpy as np

from .audio import SAMPLE_RATE
from .config import LFO, LfoWaveform
from .dsp import Signal
from .envelopes import frame_times
from .generators import accumulate_phase, waveform

_LOGGER = logging.getLogger("layersynth.modulation")

PITCH_CENTS_PER_DEPTH = 100.0


def lfo_shape(
    shape: LfoWaveform,
    frequency: float,
    frames: int,
    rng: np.random.Generator,
    sample_rate: int = SAMPLE_RATE,
) -> Signal:
    """Bipolar LFO in [-1, 1]; ``random`` holds a new value each LFO period."""

    if shape == "random":
        steps = np.floor(frame_times(frames, sample_rate) * frequency).astype(np.int64)
        held = rng.uniform(-1.0, 1.0, int(steps[-1]) + 1 if frames else 0)
        return held[steps]
    phase, increments = accumulate_phase(np.full(frames, frequency, dtype=np.float64), sample_rate)
    return waveform(shape, phase, increments)


def lfo_gain(delay: float, fade: float, frames: int, sample_rate: int = SAMPLE_RATE) -> Signal:
    """0 until ``delay``, then a linear ramp to 1 over ``fade`` seconds."""

    t = frame_times(frames, sample_rate)
    if fade <= 0:
        return (t >= delay).astype(np.float64)
    return np.clip((t - delay) / fade, 0.0, 1.0)


def lfo_curve(
    lfo: LFO,
    frames: int,
    rng: np.random.Generator,
    sample_rate: int = SAMPLE_RATE,
) -> Signal:
    """LFO output scaled by ``depth`` and the delay/fade gain."""

    shape = lfo_shape(lfo.waveform, lfo.frequency, frames, rng, sample_rate)
    return shape * lfo.depth * lfo_gain(lfo.delay, lfo.fade, frames, sample_rate)


def pitch_offset(lfo: LFO | None, modulation: Signal | None) -> Signal | None:
    """Detune in cents for the ``pitch`` target, else None."""

    if lfo is None or modulation is None or lfo.target != "pitch":
        return None
    return modulation * PITCH_CENTS_PER_DEPTH
