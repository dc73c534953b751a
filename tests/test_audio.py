from pathlib import Path

import numpy as np
import pytest
import soundfile as sf  # type: ignore[import]

from layersynth.audio import (
    SAMPLE_RATE,
    ensure_audio_contract,
    to_mono,
    to_pcm16,
    trim_silence,
    write_wav,
)
from layersynth.errors import InvalidConfigError


def test_write_wav_accepts_sequence(tmp_path: Path) -> None:
    target = tmp_path / "seq.wav"
    samples = [0.0, 0.1, -0.1, 0.0]

    write_wav(target, samples, sample_rate=22_050)

    assert target.exists()
    assert target.stat().st_size > 0


def test_write_wav_stereo_layout(tmp_path: Path) -> None:
    target = tmp_path / "stereo.wav"
    audio = np.stack((np.full(100, 0.5), np.full(100, -0.5))).astype(np.float32)

    write_wav(target, audio)

    data, sample_rate = sf.read(target)
    assert sample_rate == SAMPLE_RATE
    assert data.shape == (100, 2)
    assert data[0, 0] == pytest.approx(0.5, abs=1e-3)
    assert data[0, 1] == pytest.approx(-0.5, abs=1e-3)


def test_ensure_audio_contract_skip_peak() -> None:
    audio = np.array([2.0, -2.0], dtype=np.float32)
    out = ensure_audio_contract(audio, check_peak=False)
    assert np.allclose(out, audio)


def test_ensure_audio_contract_scales_peak_and_drops_nan() -> None:
    audio = np.array([[2.0, np.nan], [-1.0, np.inf]])
    out = ensure_audio_contract(audio)
    assert out.dtype == np.float32
    assert np.allclose(out, [[1.0, 0.0], [-0.5, 0.0]])


def test_ensure_audio_contract_rejects_cubes() -> None:
    with pytest.raises(InvalidConfigError):
        ensure_audio_contract(np.zeros((2, 2, 2)))


def test_to_pcm16_extremes() -> None:
    pcm = to_pcm16(np.array([-1.0, 0.0, 1.0, 2.0]))
    assert pcm.tolist() == [-32768, 0, 32767, 32767]
    stereo = to_pcm16(np.zeros((2, 10)))
    assert stereo.shape == (10, 2)
    assert stereo.dtype == np.int16


def test_to_mono_averages_channels() -> None:
    mono = to_mono(np.array([[1.0, 0.0], [0.0, 1.0]]))
    assert np.allclose(mono, [0.5, 0.5])


def test_trim_silence_keeps_loud_region() -> None:
    audio = np.zeros((2, 100), dtype=np.float32)
    audio[:, 40:60] = 0.5
    trimmed = trim_silence(audio)
    assert trimmed.shape == (2, 20)
    assert trim_silence(np.zeros((2, 10))).shape == (2, 0)
