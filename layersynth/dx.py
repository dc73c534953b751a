from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

import numpy as np
from numpy.typing import DTypeLike, NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from . import audio as _audio
from .audio import SAMPLE_RATE, SILENCE_THRESHOLD_DB, FloatArray, ensure_audio_contract, write_wav
from .canonicalize import RawConfig, canonicalize
from .config import SoundConfig
from .errors import LayerSynthError, RenderError
from .logging_utils import debug_enabled
from .synth import render_buffer

_LOGGER = logging.getLogger("layersynth.dx")

SoundInput = SoundConfig | RawConfig


class RenderedSound(BaseModel):
    """A rendered (channels, frames) float32 buffer and the config that produced it."""

    samples: FloatArray
    sample_rate: int = SAMPLE_RATE
    config: SoundConfig | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @model_validator(mode="after")
    def _normalize(self) -> "RenderedSound":
        normalized = ensure_audio_contract(self.samples)
        object.__setattr__(self, "samples", normalized)
        return self

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate

    def to_numpy(self) -> FloatArray:
        return self.samples

    def __array__(self, dtype: DTypeLike | None = None) -> NDArray[np.generic]:
        return np.asarray(self.samples, dtype=dtype)

    def to_mono(self) -> FloatArray:
        return _audio.to_mono(self.samples)

    def trim_silence(self, threshold_db: float = SILENCE_THRESHOLD_DB) -> "RenderedSound":
        trimmed = _audio.trim_silence(self.samples, threshold_db=threshold_db)
        return RenderedSound(samples=trimmed, sample_rate=self.sample_rate, config=self.config)

    def to_pcm16(self) -> NDArray[np.int16]:
        return _audio.to_pcm16(self.samples)

    def save(self, path: str | Path) -> Path:
        return write_wav(path, self.samples, sample_rate=self.sample_rate)


class BatchItem(BaseModel):
    """Outcome of one batch entry: exactly one of ``sound`` and ``error`` is set."""

    index: int
    sound: RenderedSound | None = None
    error: Exception | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def ok(self) -> bool:
        return self.error is None


def _resolve(config: SoundInput) -> SoundConfig:
    if isinstance(config, SoundConfig):
        return config
    return canonicalize(config)


def render(
    config: SoundInput,
    *,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> RenderedSound:
    """Canonicalize (if needed) and render one sound.

    Shape problems raise ``InvalidConfigError`` before any audio work; any
    failure inside the engine is re-raised as ``RenderError``.
    """

    canonical = _resolve(config)
    generator = rng if rng is not None else np.random.default_rng(seed)
    try:
        samples = render_buffer(canonical, generator)
    except LayerSynthError:
        raise
    except Exception as exc:
        _LOGGER.warning("render failed: %s", exc, exc_info=debug_enabled())
        raise RenderError(f"Failed to render {canonical.metadata.name!r}: {exc}") from exc
    return RenderedSound(samples=samples, sample_rate=SAMPLE_RATE, config=canonical)


async def arender(
    config: SoundInput,
    *,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> RenderedSound:
    return await asyncio.to_thread(render, config, seed=seed, rng=rng)


def _batch_generators(count: int, seed: int | None) -> list[np.random.Generator]:
    children = np.random.SeedSequence(seed).spawn(count)
    return [np.random.default_rng(child) for child in children]


async def arender_batch(
    configs: Sequence[SoundInput],
    *,
    seed: int | None = None,
) -> list[BatchItem]:
    """Render every config concurrently; one failure never cancels the others.

    Items come back in input order. With ``seed`` set, each item gets its own
    independent generator derived from it, so results do not depend on
    scheduling.
    """

    generators = _batch_generators(len(configs), seed)
    results = await asyncio.gather(
        *(arender(config, rng=generator) for config, generator in zip(configs, generators)),
        return_exceptions=True,
    )
    items: list[BatchItem] = []
    for index, result in enumerate(results):
        if isinstance(result, RenderedSound):
            items.append(BatchItem(index=index, sound=result))
        elif isinstance(result, Exception):
            _LOGGER.warning("batch item %d failed: %s", index, result, exc_info=debug_enabled())
            items.append(BatchItem(index=index, error=result))
        else:
            raise result
    return items


def render_batch(configs: Sequence[SoundInput], *, seed: int | None = None) -> list[BatchItem]:
    return asyncio.run(arender_batch(configs, seed=seed))
