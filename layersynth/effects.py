"""Post-mix effects chain.

Stages run in a fixed order and a stage only runs when its section of
``Effects`` is present: EQ -> distortion -> compressor -> chorus -> delay ->
reverb -> gate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from scipy.signal import fftconvolve, lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE
from .config import EQ, Chorus, Compressor, Delay, Distortion, Effects, Gate, Reverb
from .dsp import (
    Signal,
    apply_biquad,
    apply_waveshaper,
    biquad_coefficients,
    distortion_curve,
    mix_dry_wet,
)
from .envelopes import frame_times

_LOGGER = logging.getLogger("layersynth.effects")

EQ_LOW_SHELF_HZ = 250.0
EQ_MID_PEAK_HZ = 1000.0
EQ_HIGH_SHELF_HZ = 4000.0
DELAY_LOOP_CUTOFF_HZ = 4000.0
DELAY_LOOP_Q = 0.5
REVERB_DAMPING_EXPONENT = 3.0
# convolver output is scaled to roughly match the dry level
REVERB_GAIN_CALIBRATION_DB = -58.0
REVERB_MIN_POWER = 0.000125


# =============================================================================
# STAGES
# =============================================================================


def apply_eq(signal: Signal, eq: EQ, rng: np.random.Generator, sample_rate: int) -> Signal:
    """Low shelf at 250 Hz, 1 kHz peak (Q 1), high shelf at 4 kHz."""

    bands = (
        ("lowshelf", EQ_LOW_SHELF_HZ, eq.low),
        ("peaking", EQ_MID_PEAK_HZ, eq.mid),
        ("highshelf", EQ_HIGH_SHELF_HZ, eq.high),
    )
    for kind, frequency, gain_db in bands:
        if gain_db != 0.0:
            signal = apply_biquad(signal, kind, frequency, 1.0, gain_db, sample_rate)
    return signal


def apply_distortion(
    signal: Signal, distortion: Distortion, rng: np.random.Generator, sample_rate: int
) -> Signal:
    wet = apply_waveshaper(signal, distortion_curve(distortion.type, distortion.amount))
    return mix_dry_wet(signal, wet, distortion.mix)


def gain_reduction_db(level_db: Signal, threshold: float, ratio: float, knee: float) -> Signal:
    """Static soft-knee compression curve, returned as positive dB of reduction."""

    over = level_db - threshold
    compressed = threshold + over / ratio
    if knee > 0:
        in_knee = np.abs(2.0 * over) <= knee
        knee_curve = level_db + (1.0 / ratio - 1.0) * (over + knee / 2.0) ** 2 / (2.0 * knee)
        output = np.where(2.0 * over < -knee, level_db, np.where(in_knee, knee_curve, compressed))
    else:
        output = np.where(over <= 0, level_db, compressed)
    return level_db - output


def _smoothing_coefficient(seconds: float, sample_rate: int) -> float:
    if seconds <= 0:
        return 0.0
    return math.exp(-1.0 / (seconds * sample_rate))


def apply_compressor(
    signal: Signal, compressor: Compressor, rng: np.random.Generator, sample_rate: int
) -> Signal:
    """Feed-forward compressor with a stereo-linked peak detector."""

    if signal.shape[-1] == 0:
        return signal
    peak = np.max(np.abs(signal), axis=0)
    level_db = 20.0 * np.log10(np.maximum(peak, 1e-12))
    target = gain_reduction_db(
        level_db, compressor.threshold, compressor.ratio, compressor.knee
    )

    attack = _smoothing_coefficient(compressor.attack, sample_rate)
    release = _smoothing_coefficient(compressor.release, sample_rate)
    smoothed = np.empty_like(target)
    state = 0.0
    for index, value in enumerate(target.tolist()):
        coefficient = attack if value > state else release
        state = coefficient * state + (1.0 - coefficient) * value
        smoothed[index] = state
    return signal * np.power(10.0, -smoothed / 20.0)


def _fractional_delay(channel: Signal, delay_samples: Signal) -> Signal:
    positions = np.arange(channel.shape[0], dtype=np.float64) - delay_samples
    return np.interp(positions, np.arange(channel.shape[0], dtype=np.float64), channel, left=0.0)


def apply_chorus(
    signal: Signal, chorus: Chorus, rng: np.random.Generator, sample_rate: int
) -> Signal:
    """Modulated short delay per channel; the right LFO runs 90 degrees ahead."""

    t = frame_times(signal.shape[-1], sample_rate)
    wet = np.empty_like(signal)
    for channel in range(signal.shape[0]):
        offset = channel * (np.pi / 2.0)
        sweep = np.sin(2.0 * np.pi * chorus.rate * t + offset)
        delay_seconds = chorus.delay * (1.0 + chorus.depth * sweep)
        wet[channel] = _fractional_delay(signal[channel], delay_seconds * sample_rate)
    return mix_dry_wet(signal, wet, chorus.mix)


def apply_delay(signal: Signal, delay: Delay, rng: np.random.Generator, sample_rate: int) -> Signal:
    """Feedback echo; each repeat passes a 4 kHz lowpass before re-entering the line."""

    frames = signal.shape[-1]
    length = max(1, int(round(delay.time * sample_rate)))
    b, a = biquad_coefficients("lowpass", DELAY_LOOP_CUTOFF_HZ, DELAY_LOOP_Q, 0.0, sample_rate)

    line_input = signal.copy()
    wet = np.zeros_like(signal)
    state = np.zeros((signal.shape[0], 2), dtype=np.float64)
    for start in range(length, frames, length):
        stop = min(frames, start + length)
        filtered, state = lfilter(
            b, a, line_input[:, start - length : stop - length], axis=-1, zi=state
        )
        wet[:, start:stop] = filtered
        line_input[:, start:stop] += delay.feedback * filtered
    return mix_dry_wet(signal, wet, delay.mix)


def reverb_impulse(
    reverb: Reverb, channels: int, rng: np.random.Generator, sample_rate: int = SAMPLE_RATE
) -> Signal:
    """Independent decaying noise per channel, ``(1 - i/len) ** (damping * 3)``."""

    length = max(1, int(sample_rate * reverb.decay))
    ramp = 1.0 - np.arange(length, dtype=np.float64) / length
    decay = np.power(ramp, reverb.damping * REVERB_DAMPING_EXPONENT)
    impulse = rng.uniform(-1.0, 1.0, (channels, length)) * decay
    power = math.sqrt(float(np.sum(impulse * impulse)) / impulse.size)
    scale = 1.0 / max(power, REVERB_MIN_POWER)
    scale *= 10.0 ** (REVERB_GAIN_CALIBRATION_DB / 20.0)
    scale *= SAMPLE_RATE / sample_rate
    return impulse * scale


def apply_reverb(signal: Signal, reverb: Reverb, rng: np.random.Generator, sample_rate: int) -> Signal:
    frames = signal.shape[-1]
    if frames == 0:
        return signal
    impulse = reverb_impulse(reverb, signal.shape[0], rng, sample_rate)
    wet = np.stack(
        [fftconvolve(signal[channel], impulse[channel])[:frames] for channel in range(signal.shape[0])]
    )
    return mix_dry_wet(signal, wet, reverb.mix)


def gate_curve(gate: Gate, frames: int, sample_rate: int = SAMPLE_RATE) -> Signal:
    """Linear attack to unity, hold, linear release, then closed."""

    t = frame_times(frames, sample_rate)
    hold_end = gate.attack + gate.hold
    release_end = hold_end + gate.release
    opening = np.clip(t / gate.attack, 0.0, 1.0)
    closing = np.clip((release_end - t) / gate.release, 0.0, 1.0)
    return np.where(t < hold_end, opening, closing)


def apply_gate(signal: Signal, gate: Gate, rng: np.random.Generator, sample_rate: int) -> Signal:
    return signal * gate_curve(gate, signal.shape[-1], sample_rate)


# =============================================================================
# CHAIN
# =============================================================================


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    apply: Callable[[Signal, Any, np.random.Generator, int], Signal]


STAGES: tuple[Stage, ...] = (
    Stage("eq", apply_eq),
    Stage("distortion", apply_distortion),
    Stage("compressor", apply_compressor),
    Stage("chorus", apply_chorus),
    Stage("delay", apply_delay),
    Stage("reverb", apply_reverb),
    Stage("gate", apply_gate),
)


def apply_effects(
    signal: Signal,
    effects: Effects,
    rng: np.random.Generator,
    sample_rate: int = SAMPLE_RATE,
) -> Signal:
    for stage in STAGES:
        settings = getattr(effects, stage.name)
        if settings is None:
            continue
        _LOGGER.debug("applying %s", stage.name)
        signal = stage.apply(signal, settings, rng, sample_rate)
    return signal
