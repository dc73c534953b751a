"""Shared signal-processing primitives.

All processors take and return channels-first float64 arrays of shape
``(channels, frames)``.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE
from .config import DistortionType, SaturationType

Signal: TypeAlias = NDArray[np.float64]
Coefficients: TypeAlias = tuple[NDArray[np.float64], NDArray[np.float64]]
BiquadKind = Literal[
    "lowpass", "highpass", "bandpass", "notch", "allpass", "peaking", "lowshelf", "highshelf"
]

SWEEP_BLOCK = 64
SATURATION_TABLE_SIZE = 256
BITCRUSH_TABLE_SIZE = 65_536


def safe(value: float, fallback: float, *, positive: bool = False) -> float:
    """Return ``value`` unless it is non-finite (or non-positive when asked)."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number) or (positive and number <= 0.0):
        return fallback
    return number


def silence(channels: int, frames: int) -> Signal:
    return np.zeros((channels, max(0, frames)), dtype=np.float64)


# =============================================================================
# BIQUAD FILTERS
# =============================================================================


def _quantize(value: float, step: float = 0.1) -> float:
    return round(value / step) * step


@lru_cache(maxsize=4096)
def biquad_coefficients(
    kind: BiquadKind,
    frequency: float,
    q: float = 1.0,
    gain_db: float = 0.0,
    sample_rate: int = SAMPLE_RATE,
) -> Coefficients:
    """Audio EQ cookbook coefficients, normalized so ``a[0] == 1``."""

    nyquist = sample_rate / 2.0
    frequency = min(max(frequency, 1.0), nyquist * 0.999)
    q = max(q, 1e-4)
    w0 = 2.0 * math.pi * frequency / sample_rate
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)
    alpha = sin_w0 / (2.0 * q)
    gain = 10.0 ** (gain_db / 40.0)

    match kind:
        case "lowpass":
            b = ((1 - cos_w0) / 2, 1 - cos_w0, (1 - cos_w0) / 2)
            a = (1 + alpha, -2 * cos_w0, 1 - alpha)
        case "highpass":
            b = ((1 + cos_w0) / 2, -(1 + cos_w0), (1 + cos_w0) / 2)
            a = (1 + alpha, -2 * cos_w0, 1 - alpha)
        case "bandpass":
            b = (alpha, 0.0, -alpha)
            a = (1 + alpha, -2 * cos_w0, 1 - alpha)
        case "notch":
            b = (1.0, -2 * cos_w0, 1.0)
            a = (1 + alpha, -2 * cos_w0, 1 - alpha)
        case "allpass":
            b = (1 - alpha, -2 * cos_w0, 1 + alpha)
            a = (1 + alpha, -2 * cos_w0, 1 - alpha)
        case "peaking":
            b = (1 + alpha * gain, -2 * cos_w0, 1 - alpha * gain)
            a = (1 + alpha / gain, -2 * cos_w0, 1 - alpha / gain)
        case "lowshelf" | "highshelf":
            # shelf slope S = 1
            shelf_alpha = sin_w0 / 2.0 * math.sqrt(2.0)
            root = 2.0 * math.sqrt(gain) * shelf_alpha
            up, down = gain + 1, gain - 1
            if kind == "lowshelf":
                b = (
                    gain * (up - down * cos_w0 + root),
                    2 * gain * (down - up * cos_w0),
                    gain * (up - down * cos_w0 - root),
                )
                a = (up + down * cos_w0 + root, -2 * (down + up * cos_w0), up + down * cos_w0 - root)
            else:
                b = (
                    gain * (up + down * cos_w0 + root),
                    -2 * gain * (down + up * cos_w0),
                    gain * (up + down * cos_w0 - root),
                )
                a = (up - down * cos_w0 + root, 2 * (down - up * cos_w0), up - down * cos_w0 - root)
        case _:
            raise ValueError(f"Unknown filter kind: {kind!r}")

    b_arr = np.asarray(b, dtype=np.float64) / a[0]
    a_arr = np.asarray(a, dtype=np.float64) / a[0]
    b_arr.flags.writeable = False
    a_arr.flags.writeable = False
    return b_arr, a_arr


def apply_biquad(
    signal: Signal,
    kind: BiquadKind,
    frequency: float,
    q: float = 1.0,
    gain_db: float = 0.0,
    sample_rate: int = SAMPLE_RATE,
) -> Signal:
    """Filter every channel with one fixed biquad."""

    if signal.shape[-1] == 0:
        return signal.copy()
    b, a = biquad_coefficients(kind, _quantize(frequency), q, gain_db, sample_rate)
    return np.asarray(lfilter(b, a, signal, axis=-1), dtype=np.float64)


def apply_biquad_sweep(
    signal: Signal,
    kind: BiquadKind,
    frequencies: Signal,
    q: float = 1.0,
    gain_db: float = 0.0,
    sample_rate: int = SAMPLE_RATE,
    block: int = SWEEP_BLOCK,
) -> Signal:
    """Filter with a cutoff that follows ``frequencies`` (one value per frame).

    Coefficients are refreshed every ``block`` frames; filter state carries
    across blocks so the sweep stays continuous.
    """

    frames = signal.shape[-1]
    if frames == 0:
        return signal.copy()
    sweep = np.broadcast_to(np.asarray(frequencies, dtype=np.float64), (frames,))
    if float(np.ptp(sweep)) < 1e-6:
        return apply_biquad(signal, kind, float(sweep[0]), q, gain_db, sample_rate)

    output = np.empty(signal.shape, dtype=np.float64)
    state = np.zeros((signal.shape[0], 2), dtype=np.float64)
    for start in range(0, frames, block):
        stop = min(frames, start + block)
        b, a = biquad_coefficients(
            kind, _quantize(float(sweep[start])), q, gain_db, sample_rate
        )
        filtered, state = lfilter(b, a, signal[:, start:stop], axis=-1, zi=state)
        output[:, start:stop] = filtered
    return output


# =============================================================================
# WAVESHAPING
# =============================================================================


def _table_input(size: int) -> Signal:
    return (np.arange(size, dtype=np.float64) - size / 2) / (size / 2)


def _freeze(curve: Signal) -> Signal:
    curve.flags.writeable = False
    return curve


@lru_cache(maxsize=256)
def saturation_curve(kind: SaturationType, drive: float, mix: float) -> Signal:
    """256-point transfer table blended ``x * (1 - mix) + y * mix``."""

    x = _table_input(SATURATION_TABLE_SIZE)
    match kind:
        case "hard":
            y = np.clip(x * drive, -1.0, 1.0)
        case "tube":
            y = np.where(x < 0, np.tanh(x * drive * 0.8), np.tanh(x * drive * 1.2))
        case "tape":
            shaped = np.tanh(x * drive * 0.7)
            # small even-harmonic component
            y = shaped + 0.05 * shaped * shaped
        case _:
            y = np.tanh(x * drive)
    return _freeze(x * (1.0 - mix) + y * mix)


@lru_cache(maxsize=256)
def distortion_curve(kind: DistortionType, amount: float) -> Signal:
    """Transfer table for the distortion effect's wet path."""

    if kind == "bitcrush":
        bits = max(2, round(16 - amount * 14))
        levels = 2.0**bits
        x = np.arange(BITCRUSH_TABLE_SIZE, dtype=np.float64) / (BITCRUSH_TABLE_SIZE - 1) * 2 - 1
        return _freeze(np.round(x * levels) / levels)

    x = _table_input(SATURATION_TABLE_SIZE)
    drive = amount * 100.0
    match kind:
        case "hard":
            y = np.clip(x * (1 + drive), -1.0, 1.0)
        case "fuzz":
            y = np.where(
                x >= 0,
                np.tanh(x * drive * 2) * 0.9,
                np.tanh(x * drive * 0.8) * -0.7 - 0.1 * np.sin(x * drive * np.pi),
            )
        case "waveshaper":
            k = drive / 50.0
            y = (1 + k) * x / (1 + k * np.abs(x))
        case _:
            y = np.tanh(x * drive)
    return _freeze(y)


def apply_waveshaper(signal: Signal, curve: Signal) -> Signal:
    """Map samples through ``curve`` spanning [-1, 1]; inputs beyond clamp to the ends."""

    positions = np.linspace(-1.0, 1.0, curve.shape[0])
    return np.interp(np.clip(signal, -1.0, 1.0), positions, curve)


# =============================================================================
# PANNING
# =============================================================================


def pan(signal: Signal, position: float | Signal) -> Signal:
    """Equal-power stereo panner; mono input is spread, stereo input is balanced.

    ``position`` is a scalar or one value per frame in [-1, 1].
    """

    pos = np.clip(np.asarray(position, dtype=np.float64), -1.0, 1.0)
    if signal.shape[0] == 1:
        angle = (pos + 1.0) / 2.0 * (np.pi / 2.0)
        mono = signal[0]
        return np.stack((mono * np.cos(angle), mono * np.sin(angle)))

    left, right = signal[0], signal[1]
    angle = np.where(pos <= 0, pos + 1.0, pos) * (np.pi / 2.0)
    gain_l = np.cos(angle)
    gain_r = np.sin(angle)
    out_left = np.where(pos <= 0, left + right * gain_l, left * gain_l)
    out_right = np.where(pos <= 0, right * gain_r, right + left * gain_r)
    return np.stack((out_left, out_right))


def mix_dry_wet(dry: Signal, wet: Signal, mix: float) -> Signal:
    return dry * (1.0 - mix) + wet * mix
