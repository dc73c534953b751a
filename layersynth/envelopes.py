"""ADSR automation curves.

Both curves are built from breakpoints joined by exponential ramps. An
exponential ramp ``v0 * (v1 / v0) ** ((t - t0) / (t1 - t0))`` is a straight
line in log space, so each curve is a linear interpolation of log values.
"""

from __future__ import annotations

from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

from .audio import SAMPLE_RATE
from .config import Envelope, FilterEnvelope

Curve: TypeAlias = NDArray[np.float64]

FLOOR = 1e-4  # -80 dB
MIN_FILTER_HZ = 20.0
MAX_FILTER_HZ = 20_000.0


def frame_times(num_frames: int, sample_rate: int = SAMPLE_RATE) -> Curve:
    return np.arange(num_frames, dtype=np.float64) / sample_rate


def _segment_times(envelope: Envelope, duration: float) -> tuple[float, float, float, float]:
    attack_end = max(0.0, envelope.attack)
    decay_end = attack_end + max(0.0, envelope.decay)
    release_start = max(decay_end, duration - envelope.release)
    end = max(release_start, duration)
    return attack_end, decay_end, release_start, end


def _exponential_curve(
    times: tuple[float, ...],
    values: tuple[float, ...],
    num_frames: int,
    sample_rate: int,
) -> Curve:
    t = frame_times(num_frames, sample_rate)
    log_values = np.log(np.asarray(values, dtype=np.float64))
    return np.exp(np.interp(t, np.asarray(times, dtype=np.float64), log_values))


def amplitude_curve(
    envelope: Envelope,
    peak: float,
    duration: float,
    num_frames: int,
    sample_rate: int = SAMPLE_RATE,
) -> Curve:
    """Gain per frame: FLOOR -> peak -> sustain level, hold, -> FLOOR at ``duration``."""

    if peak <= 0.0 or num_frames <= 0:
        return np.zeros(max(0, num_frames), dtype=np.float64)
    attack_end, decay_end, release_start, end = _segment_times(envelope, duration)
    sustain_level = max(FLOOR, peak * envelope.sustain)
    return _exponential_curve(
        (0.0, attack_end, decay_end, release_start, end),
        (FLOOR, peak, sustain_level, sustain_level, FLOOR),
        num_frames,
        sample_rate,
    )


def filter_curve(
    envelope: FilterEnvelope,
    base_frequency: float,
    duration: float,
    num_frames: int,
    sample_rate: int = SAMPLE_RATE,
) -> Curve:
    """Cutoff per frame: base -> base+amount -> base+amount*sustain, hold, -> base.

    Every breakpoint is kept inside the audible range so the ramps stay
    positive whatever the sign of ``amount``.
    """

    if num_frames <= 0:
        return np.zeros(0, dtype=np.float64)

    def _bounded(value: float) -> float:
        return min(MAX_FILTER_HZ, max(MIN_FILTER_HZ, value))

    start = _bounded(base_frequency)
    peak = _bounded(base_frequency + envelope.amount)
    sustain = _bounded(base_frequency + envelope.amount * envelope.sustain)
    attack_end, decay_end, release_start, end = _segment_times(envelope, duration)
    curve = _exponential_curve(
        (0.0, attack_end, decay_end, release_start, end),
        (start, peak, sustain, sustain, start),
        num_frames,
        sample_rate,
    )
    return np.clip(curve, MIN_FILTER_HZ, MAX_FILTER_HZ)
