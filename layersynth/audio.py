from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import InvalidConfigError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100
CHANNELS = 2
SILENCE_THRESHOLD_DB = -50.0


def _as_channels(audio: AudioNumbers) -> FloatArray:
    """Return audio as a channels-first float32 array of shape (channels, frames)."""

    array: FloatArray = np.asarray(audio, dtype=np.float32)
    match array.ndim:
        case 1:
            return array.reshape(1, -1)
        case 2:
            return array
        case _:
            raise InvalidConfigError(f"audio must be 1-D or (channels, frames), got {array.shape}")


def ensure_audio_contract(
    audio: AudioNumbers,
    *,
    check_peak: bool = True,
) -> FloatArray:
    """Normalize dtype/range/shape to the audio contract.

    Non-finite samples become silence and, unless ``check_peak`` is False, a
    peak above full scale is scaled back to 1.0.
    """

    channels = _as_channels(audio)
    channels = np.nan_to_num(channels, nan=0.0, posinf=0.0, neginf=0.0)
    if channels.size == 0 or not check_peak:
        return channels
    peak = float(np.max(np.abs(channels)))
    if peak > 1.0:
        channels = channels / peak
    return channels


def to_mono(audio: AudioNumbers) -> FloatArray:
    """Fold a channels-first buffer to one channel by averaging."""

    channels = _as_channels(audio)
    if channels.shape[0] == 1:
        return channels[0].copy()
    return np.mean(channels, axis=0, dtype=np.float32)


def trim_silence(
    audio: AudioNumbers,
    *,
    threshold_db: float = SILENCE_THRESHOLD_DB,
) -> FloatArray:
    """Drop leading and trailing frames whose peak across channels is below threshold."""

    channels = _as_channels(audio)
    if channels.shape[1] == 0:
        return channels
    threshold = 10.0 ** (threshold_db / 20.0)
    loud = np.flatnonzero(np.max(np.abs(channels), axis=0) >= threshold)
    if loud.size == 0:
        return channels[:, :0]
    return channels[:, int(loud[0]) : int(loud[-1]) + 1]


def to_pcm16(audio: AudioNumbers) -> NDArray[np.int16]:
    """Encode float samples as interleaved-ready 16-bit PCM, (frames,) or (frames, channels)."""

    channels = np.clip(_as_channels(audio), -1.0, 1.0)
    scaled = np.where(channels < 0, channels * 32768.0, channels * 32767.0)
    pcm = np.round(scaled).astype(np.int16)
    if pcm.shape[0] == 1:
        return pcm[0]
    return np.ascontiguousarray(pcm.T)


def write_wav(
    path: str | Path,
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
    subtype: str = "PCM_16",
) -> Path:
    """Write a channels-first buffer to a wav file."""

    target = Path(path)
    channels = ensure_audio_contract(audio)
    write_fn = getattr(sf, "write", None)
    assert callable(write_fn)
    write_audio = cast(Callable[..., None], write_fn)
    # soundfile expects (frames, channels)
    write_audio(target, channels.T, sample_rate, subtype=subtype)
    return target
