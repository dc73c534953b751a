from __future__ import annotations

import numpy as np
import pytest

from layersynth.config import Envelope, FilterEnvelope
from layersynth.envelopes import (
    FLOOR,
    MAX_FILTER_HZ,
    MIN_FILTER_HZ,
    amplitude_curve,
    filter_curve,
)

SR = 44_100


def _curve(**fields: float) -> np.ndarray:
    envelope = Envelope(**{"attack": 0.02, "decay": 0.1, "sustain": 0.5, "release": 0.3, **fields})
    return amplitude_curve(envelope, 1.0, 1.0, SR, SR)


def test_amplitude_starts_at_floor_and_reaches_peak() -> None:
    curve = _curve()
    assert curve[0] == pytest.approx(FLOOR)
    assert curve[int(0.02 * SR)] == pytest.approx(1.0)
    assert float(curve.max()) == pytest.approx(1.0)


def test_attack_is_exponential() -> None:
    curve = _curve()
    # geometric mean of FLOOR and the peak halfway through the attack
    assert curve[int(0.01 * SR)] == pytest.approx(np.sqrt(FLOOR * 1.0), rel=1e-6)
    assert np.all(np.diff(curve[: int(0.02 * SR)]) > 0)


def test_sustain_holds_until_release() -> None:
    curve = _curve()
    assert curve[int(0.5 * SR)] == pytest.approx(0.5)
    assert curve[int(0.69 * SR)] == pytest.approx(0.5)


def test_release_ends_near_floor() -> None:
    curve = _curve()
    assert curve[-1] == pytest.approx(FLOOR, rel=0.01)


def test_zero_peak_is_silent() -> None:
    envelope = Envelope()
    assert not np.any(amplitude_curve(envelope, 0.0, 1.0, 1000, SR))
    assert amplitude_curve(envelope, 1.0, 1.0, 0, SR).shape == (0,)


def test_overlong_segments_stay_finite() -> None:
    envelope = Envelope(attack=5.0, decay=5.0, sustain=0.0, release=10.0)
    curve = amplitude_curve(envelope, 0.8, 1.0, SR, SR)
    assert np.all(np.isfinite(curve))
    assert float(curve.max()) <= 0.8


def test_filter_curve_starts_at_base_and_peaks() -> None:
    envelope = FilterEnvelope(attack=0.1, decay=0.1, sustain=0.5, release=0.2, amount=2000.0)
    curve = filter_curve(envelope, 500.0, 1.0, SR, SR)
    assert curve[0] == pytest.approx(500.0)
    assert curve[int(0.1 * SR)] == pytest.approx(2500.0)
    assert curve[int(0.5 * SR)] == pytest.approx(1500.0)


@pytest.mark.parametrize("amount", [20_000.0, -20_000.0])
def test_filter_curve_is_clamped_to_audible_range(amount: float) -> None:
    envelope = FilterEnvelope(amount=amount)
    curve = filter_curve(envelope, 8000.0, 1.0, SR, SR)
    assert float(curve.min()) >= MIN_FILTER_HZ
    assert float(curve.max()) <= MAX_FILTER_HZ
