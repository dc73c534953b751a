from __future__ import annotations

import numpy as np
import pytest

from layersynth.config import LFO
from layersynth.modulation import (
    PITCH_CENTS_PER_DEPTH,
    lfo_curve,
    lfo_gain,
    lfo_shape,
    pitch_offset,
)

SR = 44_100


def test_lfo_gain_waits_for_delay() -> None:
    gain = lfo_gain(0.5, 0.0, SR, SR)
    assert not np.any(gain[: SR // 2])
    assert np.all(gain[SR // 2 :] == 1.0)


def test_lfo_gain_fades_in() -> None:
    gain = lfo_gain(0.25, 0.5, SR, SR)
    assert gain[int(0.25 * SR)] == pytest.approx(0.0)
    assert gain[int(0.5 * SR)] == pytest.approx(0.5)
    assert gain[-1] == pytest.approx(1.0)


def test_random_lfo_holds_each_period() -> None:
    shape = lfo_shape("random", 10.0, SR, np.random.default_rng(3), SR)
    assert len(np.unique(shape)) == 10
    assert np.all(shape[:4410] == shape[0])
    assert float(np.max(np.abs(shape))) <= 1.0


def test_lfo_shape_sine_frequency() -> None:
    shape = lfo_shape("sine", 5.0, SR, np.random.default_rng(0), SR)
    crossings = np.count_nonzero(np.diff(np.signbit(shape)))
    assert crossings == pytest.approx(10, abs=1)


@pytest.mark.parametrize("waveform", ["sine", "square", "sawtooth", "triangle", "random"])
def test_curve_is_bounded_by_depth(waveform: str) -> None:
    lfo = LFO(waveform=waveform, frequency=3.0, depth=0.3)  # type: ignore[arg-type]
    curve = lfo_curve(lfo, SR, np.random.default_rng(1), SR)
    assert float(np.max(np.abs(curve))) <= 0.3 + 1e-9


def test_pitch_offset_only_for_pitch_target() -> None:
    modulation = np.full(4, 0.5)
    cents = pitch_offset(LFO(target="pitch"), modulation)
    assert cents is not None
    assert np.allclose(cents, 0.5 * PITCH_CENTS_PER_DEPTH)
    assert pitch_offset(LFO(target="filter"), modulation) is None
    assert pitch_offset(None, modulation) is None
