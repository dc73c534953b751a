from __future__ import annotations

from .audio import CHANNELS, SAMPLE_RATE
from .canonicalize import (
    CanonicalizeResult,
    Correction,
    canonicalize,
    canonicalize_with_report,
)
from .config import (
    BOUNDS,
    DEFAULT_SOUND_CONFIG,
    EQ,
    FMLayer,
    KarplusLayer,
    Layer,
    LFO,
    NoiseLayer,
    OscillatorLayer,
    SoundConfig,
    clamp,
)
from .dx import BatchItem, RenderedSound, arender, arender_batch, render, render_batch
from .errors import InvalidConfigError, LayerSynthError, RenderError
from .logging_utils import configure_logging as _configure_logging
from .synth import render_buffer

__all__ = [
    "BOUNDS",
    "CHANNELS",
    "DEFAULT_SOUND_CONFIG",
    "EQ",
    "LFO",
    "SAMPLE_RATE",
    "BatchItem",
    "CanonicalizeResult",
    "Correction",
    "FMLayer",
    "InvalidConfigError",
    "KarplusLayer",
    "Layer",
    "LayerSynthError",
    "NoiseLayer",
    "OscillatorLayer",
    "RenderError",
    "RenderedSound",
    "SoundConfig",
    "arender",
    "arender_batch",
    "canonicalize",
    "canonicalize_with_report",
    "clamp",
    "render",
    "render_batch",
    "render_buffer",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
