from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable

import numpy as np
from scipy.signal import lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE
from .config import (
    FMLayer,
    KarplusLayer,
    NoiseColor,
    NoiseLayer,
    OscillatorLayer,
    Unison,
    Waveform,
)
from .dsp import Signal, pan, safe
from .envelopes import amplitude_curve

_LOGGER = logging.getLogger("layersynth.generators")

DEFAULT_FREQUENCY = 440.0

# Paul Kellet's refined pink noise filter: (decay, gain) per one-pole section
PINK_SECTIONS: tuple[tuple[float, float], ...] = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)
PINK_DELAYED_GAIN = 0.115926
PINK_WHITE_GAIN = 0.5362
PINK_OUTPUT_GAIN = 0.11
BROWN_STEP = 0.02
BROWN_OUTPUT_GAIN = 3.5


@dataclass(frozen=True, slots=True)
class GeneratorContext:
    """Per-render inputs shared by every generator."""

    frames: int
    duration: float
    rng: np.random.Generator
    sample_rate: int = SAMPLE_RATE
    pitch_cents: Signal | None = None
    carrier_modulation: Signal | None = None


def _stereo(mono: Signal) -> Signal:
    return np.stack((mono, mono))


# =============================================================================
# PART 1: PERIODIC WAVEFORMS
# =============================================================================


def accumulate_phase(frequencies: Signal, sample_rate: int = SAMPLE_RATE) -> tuple[Signal, Signal]:
    """Return (phase in cycles wrapped to [0, 1), per-frame increment)."""

    increments = np.asarray(frequencies, dtype=np.float64) / sample_rate
    phase = np.empty_like(increments)
    if increments.size:
        phase[0] = 0.0
        np.cumsum(increments[:-1], out=phase[1:])
    return np.mod(phase, 1.0), increments


def _poly_blep(t: Signal, dt: Signal) -> Signal:
    """Two-sample polynomial band-limited step residual."""

    correction = np.zeros_like(t)
    rising = t < dt
    x = t[rising] / dt[rising]
    correction[rising] = x + x - x * x - 1.0
    falling = t > 1.0 - dt
    x = (t[falling] - 1.0) / dt[falling]
    correction[falling] = x * x + x + x + 1.0
    return correction


def waveform(name: Waveform, phase: Signal, increments: Signal) -> Signal:
    """Evaluate one period shape; ``sawtooth`` and ``square`` are PolyBLEP corrected."""

    dt = np.clip(np.abs(increments), 1e-9, 0.5)
    match name:
        case "square":
            naive = np.where(phase < 0.5, 1.0, -1.0)
            return naive + _poly_blep(phase, dt) - _poly_blep(np.mod(phase + 0.5, 1.0), dt)
        case "sawtooth":
            shifted = np.mod(phase + 0.5, 1.0)
            return 2.0 * shifted - 1.0 - _poly_blep(shifted, dt)
        case "triangle":
            return 1.0 - 4.0 * np.abs(np.mod(phase + 0.25, 1.0) - 0.5)
        case _:
            return np.sin(2.0 * np.pi * phase)


def _tone(name: Waveform, base: float, cents: float, ctx: GeneratorContext) -> Signal:
    offset = np.full(ctx.frames, cents, dtype=np.float64)
    if ctx.pitch_cents is not None:
        offset = offset + ctx.pitch_cents
    frequencies = base * np.power(2.0, offset / 1200.0)
    phase, increments = accumulate_phase(frequencies, ctx.sample_rate)
    return waveform(name, phase, increments)


# =============================================================================
# PART 2: LAYER SOURCES
# =============================================================================


def generate_oscillator(layer: OscillatorLayer, ctx: GeneratorContext) -> Signal:
    params = layer.oscillator
    base = safe(params.frequency, DEFAULT_FREQUENCY, positive=True)
    detune = safe(params.detune, 0.0)
    unison = params.unison or Unison()
    voices = int(safe(unison.voices, 1.0, positive=True))

    if voices == 1 and params.sub is None:
        return _stereo(_tone(params.waveform, base, detune, ctx))

    output = np.zeros((2, ctx.frames), dtype=np.float64)
    voice_gain = 1.0 / math.sqrt(voices)
    for index in range(voices):
        position = (index / (voices - 1) - 0.5) * 2.0 if voices > 1 else 0.0
        mono = _tone(params.waveform, base, detune + position * unison.detune, ctx)
        if voices > 1 and unison.spread > 0:
            voice = pan(mono[np.newaxis, :], position * unison.spread)
        else:
            voice = _stereo(mono)
        output += voice * voice_gain

    if params.sub is not None:
        sub_frequency = base / 2.0 ** abs(params.sub.octave)
        output += _stereo(_tone(params.sub.waveform, sub_frequency, 0.0, ctx)) * params.sub.level
    return output


def noise(color: NoiseColor, frames: int, rng: np.random.Generator) -> Signal:
    """Mono noise in roughly [-1, 1]."""

    white = rng.uniform(-1.0, 1.0, frames)
    match color:
        case "pink":
            pink = white * PINK_WHITE_GAIN
            for decay, gain in PINK_SECTIONS:
                pink = pink + lfilter([gain], [1.0, -decay], white)
            delayed = np.concatenate(([0.0], white[:-1])) if frames else white
            return (pink + delayed * PINK_DELAYED_GAIN) * PINK_OUTPUT_GAIN
        case "brown":
            leaky = lfilter([BROWN_STEP / (1.0 + BROWN_STEP)], [1.0, -1.0 / (1.0 + BROWN_STEP)], white)
            return np.asarray(leaky, dtype=np.float64) * BROWN_OUTPUT_GAIN
        case _:
            return white


def generate_noise(layer: NoiseLayer, ctx: GeneratorContext) -> Signal:
    return _stereo(noise(layer.noise.type, ctx.frames, ctx.rng))


def _feedback_modulator(phase: Signal, feedback: float) -> Signal:
    """Sine modulator whose phase is pushed by its own previous output."""

    radians = 2.0 * np.pi * phase
    amount = feedback * math.pi
    output = np.empty_like(radians)
    previous = 0.0
    sin = math.sin
    for index, angle in enumerate(radians.tolist()):
        previous = sin(angle + amount * previous)
        output[index] = previous
    return output


def generate_fm(layer: FMLayer, ctx: GeneratorContext) -> Signal:
    """Two-operator FM; depth in Hz is ``modulation_index * carrier``."""

    params = layer.fm
    carrier = safe(params.carrier, DEFAULT_FREQUENCY, positive=True)
    carrier_frequencies = np.full(ctx.frames, carrier, dtype=np.float64)
    if ctx.pitch_cents is not None:
        carrier_frequencies = carrier_frequencies * np.power(2.0, ctx.pitch_cents / 1200.0)

    depth: float | Signal = params.modulation_index * carrier
    if params.envelope is not None:
        depth = depth * amplitude_curve(
            params.envelope, 1.0, ctx.duration, ctx.frames, ctx.sample_rate
        )

    instantaneous = carrier_frequencies
    if np.any(np.asarray(depth) > 0):
        modulator_phase, _ = accumulate_phase(carrier_frequencies * params.ratio, ctx.sample_rate)
        if params.feedback > 0:
            modulator = _feedback_modulator(modulator_phase, params.feedback)
        else:
            modulator = np.sin(2.0 * np.pi * modulator_phase)
        instantaneous = instantaneous + depth * modulator
    if ctx.carrier_modulation is not None:
        instantaneous = instantaneous + ctx.carrier_modulation

    phase, _ = accumulate_phase(instantaneous, ctx.sample_rate)
    return _stereo(np.sin(2.0 * np.pi * phase))


def generate_karplus(layer: KarplusLayer, ctx: GeneratorContext) -> Signal:
    """Plucked string: a one-period noise burst circulating through a damped loop.

    The burst is at full level from the first sample. The string has no attack
    of its own, so a softer onset comes only from the layer envelope.
    """

    params = layer.karplus
    frequency = safe(params.frequency, DEFAULT_FREQUENCY, positive=True)
    period = ctx.sample_rate / frequency
    # the two-point average adds half a sample; the allpass covers the fraction
    length = max(2, int(period - 0.6))
    fraction = max(0.1, period - 0.5 - length)

    burst = ctx.rng.uniform(-1.0, 1.0, length)
    if params.pluck_position is not None:
        offset = int(round(params.pluck_position * length))
        if 0 < offset < length:
            burst[offset:] = burst[offset:] - burst[:-offset].copy()
            burst /= max(1e-9, float(np.max(np.abs(burst))))

    damping = float(np.clip(1.0 - params.damping * 0.1, 0.01, 0.999))
    coefficient = (1.0 - fraction) / (1.0 + fraction) - 0.6 * params.inharmonicity
    coefficient = float(np.clip(coefficient, -0.95, 0.95))
    b = damping * 0.5 * np.convolve([1.0, 1.0], [coefficient, 1.0])
    a = np.array([1.0, coefficient])

    output = np.zeros(ctx.frames, dtype=np.float64)
    first = min(length, ctx.frames)
    output[:first] = burst[:first]
    state = np.zeros(2, dtype=np.float64)
    for start in range(length, ctx.frames, length):
        stop = min(ctx.frames, start + length)
        block, state = lfilter(b, a, output[start - length : stop - length], zi=state)
        output[start:stop] = block
    return _stereo(output)


GeneratorFn = Callable[[Any, GeneratorContext], Signal]

GENERATORS: Mapping[str, GeneratorFn] = MappingProxyType(
    {
        "oscillator": generate_oscillator,
        "noise": generate_noise,
        "fm": generate_fm,
        "karplus-strong": generate_karplus,
    }
)


def generate(layer: Any, ctx: GeneratorContext) -> Signal:
    """Dispatch on ``layer.type``; returns a stereo (2, frames) buffer."""

    generator = GENERATORS[layer.type]
    _LOGGER.debug("generating %s layer (%d frames)", layer.type, ctx.frames)
    return generator(layer, ctx)
