"""Per-layer processing, the layer mixer and the global stage."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable

import numpy as np

from .config import FMLayer, Layer, SoundConfig, fm_routes
from .dsp import (
    Signal,
    apply_biquad,
    apply_biquad_sweep,
    apply_waveshaper,
    pan,
    saturation_curve,
)
from .envelopes import MAX_FILTER_HZ, MIN_FILTER_HZ, amplitude_curve, filter_curve
from .generators import GeneratorContext, generate
from .modulation import lfo_curve, pitch_offset

_LOGGER = logging.getLogger("layersynth.layers")


def process_layer(layer: Layer, ctx: GeneratorContext, *, gain: float | None = None) -> Signal:
    """generator -> filter -> saturation -> envelope (peak = gain) or static gain."""

    signal = generate(layer, ctx)
    level = layer.gain if gain is None else gain

    if layer.filter is not None:
        layer_filter = layer.filter
        if layer_filter.envelope is not None:
            sweep = filter_curve(
                layer_filter.envelope,
                layer_filter.frequency,
                ctx.duration,
                ctx.frames,
                ctx.sample_rate,
            )
            signal = apply_biquad_sweep(
                signal, layer_filter.type, sweep, layer_filter.q, sample_rate=ctx.sample_rate
            )
        else:
            signal = apply_biquad(
                signal,
                layer_filter.type,
                layer_filter.frequency,
                layer_filter.q,
                sample_rate=ctx.sample_rate,
            )

    if layer.saturation is not None:
        shaping = layer.saturation
        signal = apply_waveshaper(signal, saturation_curve(shaping.type, shaping.drive, shaping.mix))

    if layer.envelope is not None:
        return signal * amplitude_curve(
            layer.envelope, level, ctx.duration, ctx.frames, ctx.sample_rate
        )
    return signal * level


def _render_layers(config: SoundConfig, ctx: GeneratorContext) -> list[Signal | None]:
    """Render every layer; routed FM sources feed their targets and are not mixed."""

    routes = fm_routes(config.layers)
    sources_of: dict[int, list[int]] = {}
    for source, target in routes.items():
        sources_of.setdefault(target, []).append(source)

    cache: dict[int, Signal] = {}

    def _render(index: int) -> Signal:
        if index in cache:
            return cache[index]
        layer = config.layers[index]
        layer_ctx = ctx
        deviation = _carrier_deviation(config, index, sources_of.get(index, []), _render)
        if deviation is not None:
            layer_ctx = dataclasses.replace(ctx, carrier_modulation=deviation)
        # routed sources modulate at unity level; their mix gain is zero
        gain = 1.0 if index in routes else None
        cache[index] = process_layer(layer, layer_ctx, gain=gain)
        return cache[index]

    outputs: list[Signal | None] = []
    for index in range(len(config.layers)):
        rendered = _render(index)
        outputs.append(None if index in routes else rendered)
    return outputs


def _carrier_deviation(
    config: SoundConfig,
    target: int,
    sources: list[int],
    render: Callable[[int], Signal],
) -> Signal | None:
    """Frequency deviation in Hz that routed FM sources add to ``target``'s carrier."""

    if not sources:
        return None
    carrier = config.layers[target]
    assert isinstance(carrier, FMLayer)
    deviation: Signal | None = None
    for source in sources:
        modulator = config.layers[source]
        assert isinstance(modulator, FMLayer)
        mono = np.mean(render(source), axis=0)
        contribution = mono * modulator.fm.modulation_index * carrier.fm.carrier
        deviation = contribution if deviation is None else deviation + contribution
        _LOGGER.debug("layer %d modulates layer %d", source, target)
    return deviation


def mix(config: SoundConfig, ctx: GeneratorContext) -> Signal:
    """Unweighted sum of all mixed layers as a (2, frames) buffer."""

    total = np.zeros((2, ctx.frames), dtype=np.float64)
    for output in _render_layers(config, ctx):
        if output is not None:
            total += output
    return total


def render_dry(config: SoundConfig, ctx: GeneratorContext) -> Signal:
    """Layers, global filter, master gain and LFO routing; everything before effects."""

    modulation = None
    if config.lfo is not None:
        modulation = lfo_curve(config.lfo, ctx.frames, ctx.rng, ctx.sample_rate)
        ctx = dataclasses.replace(ctx, pitch_cents=pitch_offset(config.lfo, modulation))

    signal = mix(config, ctx)
    target = config.lfo.target if config.lfo is not None else None

    if config.filter is not None:
        global_filter = config.filter
        if global_filter.envelope is not None:
            sweep = filter_curve(
                global_filter.envelope,
                global_filter.frequency,
                ctx.duration,
                ctx.frames,
                ctx.sample_rate,
            )
        else:
            sweep = np.full(ctx.frames, global_filter.frequency, dtype=np.float64)
        if target == "filter" and modulation is not None:
            sweep = np.clip(
                sweep + global_filter.frequency * modulation, MIN_FILTER_HZ, MAX_FILTER_HZ
            )
        signal = apply_biquad_sweep(
            signal,
            global_filter.type,
            sweep,
            global_filter.q,
            global_filter.gain,
            ctx.sample_rate,
        )
    elif target == "filter":
        _LOGGER.debug("LFO targets the filter but no global filter is configured")

    velocity = config.dynamics.velocity
    if config.has_layer_envelopes:
        signal = signal * velocity
    else:
        signal = signal * amplitude_curve(
            config.envelope, velocity, ctx.duration, ctx.frames, ctx.sample_rate
        )

    if modulation is not None:
        match target:
            case "amplitude":
                signal = signal * (1.0 + modulation)
            case "pan":
                signal = pan(signal, modulation)
    return signal
