from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

_LOGGER = logging.getLogger("layersynth.config")

LayerType = Literal["oscillator", "noise", "fm", "karplus-strong"]
Waveform = Literal["sine", "square", "sawtooth", "triangle"]
SubWaveform = Literal["sine", "square", "triangle"]
SubOctave = Literal[-1, -2]
NoiseColor = Literal["white", "pink", "brown"]
LayerFilterType = Literal["lowpass", "highpass", "bandpass", "notch"]
FilterType = Literal["lowpass", "highpass", "bandpass", "notch", "allpass", "peaking"]
SaturationType = Literal["soft", "hard", "tube", "tape"]
DistortionType = Literal["soft", "hard", "fuzz", "bitcrush", "waveshaper"]
LfoWaveform = Literal["sine", "square", "sawtooth", "triangle", "random"]
LfoTarget = Literal["pitch", "filter", "amplitude", "pan"]
Category = Literal["kick", "snare", "hihat", "tom", "perc", "bass", "lead", "pad", "fx", "other"]

MAX_LAYERS = 8


# -----------------------------------------------------------------------------
# Bounds table
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Bound:
    """Inclusive numeric range plus the value used when input is unusable."""

    minimum: float
    maximum: float
    default: float
    integer: bool = False

    def clamp(self, value: float) -> float:
        if not math.isfinite(value):
            value = self.default
        if self.integer:
            value = float(round(value))
        return min(self.maximum, max(self.minimum, value))

    def contains(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


BOUNDS: Mapping[str, Bound] = MappingProxyType(
    {
        "timing.duration": Bound(0.1, 12.0, 1.0),
        "dynamics.velocity": Bound(0.0, 1.0, 0.8),
        "envelope.attack": Bound(0.001, 5.0, 0.01),
        "envelope.decay": Bound(0.001, 5.0, 0.1),
        "envelope.sustain": Bound(0.0, 1.0, 0.5),
        "envelope.release": Bound(0.001, 10.0, 0.3),
        "filter.frequency": Bound(20.0, 20_000.0, 1000.0),
        "filter.q": Bound(0.0001, 100.0, 1.0),
        "filter.gain": Bound(-40.0, 40.0, 0.0),
        "filter_envelope.amount": Bound(-20_000.0, 20_000.0, 0.0),
        "layer.gain": Bound(0.0, 1.0, 1.0),
        "oscillator.frequency": Bound(20.0, 20_000.0, 440.0),
        "oscillator.detune": Bound(-1200.0, 1200.0, 0.0),
        "unison.voices": Bound(1.0, 8.0, 1.0, integer=True),
        "unison.detune": Bound(0.0, 100.0, 0.0),
        "unison.spread": Bound(0.0, 1.0, 0.0),
        "sub.level": Bound(0.0, 1.0, 0.5),
        "fm.carrier": Bound(20.0, 20_000.0, 440.0),
        "fm.ratio": Bound(0.5, 16.0, 1.0),
        "fm.modulation_index": Bound(0.0, 1.0, 0.5),
        "fm.feedback": Bound(0.0, 1.0, 0.0),
        "karplus.frequency": Bound(20.0, 5000.0, 220.0),
        "karplus.damping": Bound(0.0, 1.0, 0.5),
        "karplus.inharmonicity": Bound(0.0, 1.0, 0.0),
        "karplus.pluck_position": Bound(0.0, 1.0, 0.5),
        "saturation.drive": Bound(0.0, 10.0, 2.0),
        "saturation.mix": Bound(0.0, 1.0, 0.5),
        "lfo.frequency": Bound(0.01, 50.0, 1.0),
        "lfo.depth": Bound(0.0, 1.0, 0.5),
        "lfo.delay": Bound(0.0, 12.0, 0.0),
        "lfo.fade": Bound(0.0, 12.0, 0.0),
        "eq.low": Bound(-24.0, 24.0, 0.0),
        "eq.mid": Bound(-24.0, 24.0, 0.0),
        "eq.high": Bound(-24.0, 24.0, 0.0),
        "distortion.amount": Bound(0.0, 1.0, 0.5),
        "distortion.mix": Bound(0.0, 1.0, 0.5),
        "compressor.threshold": Bound(-100.0, 0.0, -24.0),
        "compressor.ratio": Bound(1.0, 20.0, 12.0),
        "compressor.knee": Bound(0.0, 40.0, 30.0),
        "compressor.attack": Bound(0.0, 1.0, 0.003),
        "compressor.release": Bound(0.0, 1.0, 0.25),
        "chorus.rate": Bound(0.05, 10.0, 1.5),
        "chorus.depth": Bound(0.0, 1.0, 0.5),
        "chorus.delay": Bound(0.001, 0.05, 0.025),
        "chorus.mix": Bound(0.0, 1.0, 0.5),
        "delay.time": Bound(0.001, 2.0, 0.25),
        # strictly below 0.9 so every echo train dies out
        "delay.feedback": Bound(0.0, 0.89, 0.3),
        "delay.mix": Bound(0.0, 1.0, 0.3),
        "reverb.decay": Bound(0.1, 5.0, 1.5),
        "reverb.damping": Bound(0.0, 1.0, 0.5),
        "reverb.mix": Bound(0.0, 1.0, 0.3),
        "gate.attack": Bound(0.0001, 12.0, 0.001),
        "gate.hold": Bound(0.0001, 12.0, 0.2),
        "gate.release": Bound(0.0001, 12.0, 0.05),
    }
)


def clamp(field: str, value: float) -> float:
    """Clamp ``value`` into the documented range of ``field`` (a BOUNDS key)."""

    try:
        bound = BOUNDS[field]
    except KeyError as exc:
        raise KeyError(f"Unknown bounded field: {field!r}") from exc
    return bound.clamp(float(value))


def _bounded(field: str) -> Any:
    bound = BOUNDS[field]
    default: float | int = int(bound.default) if bound.integer else bound.default
    return Field(default=default, ge=bound.minimum, le=bound.maximum)


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Envelope(_Frozen):
    """ADSR times in seconds, sustain as a fraction of the peak."""

    attack: float = _bounded("envelope.attack")
    decay: float = _bounded("envelope.decay")
    sustain: float = _bounded("envelope.sustain")
    release: float = _bounded("envelope.release")


class FilterEnvelope(Envelope):
    """Envelope that sweeps a filter's frequency by ``amount`` Hz."""

    amount: float = _bounded("filter_envelope.amount")


class LayerFilter(_Frozen):
    type: LayerFilterType = "lowpass"
    frequency: float = _bounded("filter.frequency")
    q: float = _bounded("filter.q")
    envelope: FilterEnvelope | None = None


class GlobalFilter(_Frozen):
    type: FilterType = "lowpass"
    frequency: float = _bounded("filter.frequency")
    q: float = _bounded("filter.q")
    gain: float = _bounded("filter.gain")
    envelope: FilterEnvelope | None = None


class Saturation(_Frozen):
    type: SaturationType = "soft"
    drive: float = _bounded("saturation.drive")
    mix: float = _bounded("saturation.mix")


class Unison(_Frozen):
    voices: int = _bounded("unison.voices")
    detune: float = _bounded("unison.detune")
    spread: float = _bounded("unison.spread")


class SubOscillator(_Frozen):
    level: float = _bounded("sub.level")
    octave: SubOctave = -1
    waveform: SubWaveform = "sine"


class OscillatorParams(_Frozen):
    waveform: Waveform = "sine"
    frequency: float = _bounded("oscillator.frequency")
    detune: float = _bounded("oscillator.detune")
    unison: Unison | None = None
    sub: SubOscillator | None = None


class NoiseParams(_Frozen):
    type: NoiseColor = "white"


class FMParams(_Frozen):
    """Two-operator FM: the modulator runs at ``carrier * ratio``.

    Modulation depth in Hz is ``modulation_index * carrier``. When
    ``modulates_layer`` is set, this layer's output drives the carrier
    frequency of that FM layer instead of being mixed.
    """

    carrier: float = _bounded("fm.carrier")
    ratio: float = _bounded("fm.ratio")
    modulation_index: float = _bounded("fm.modulation_index")
    feedback: float = _bounded("fm.feedback")
    envelope: Envelope | None = None
    modulates_layer: int | None = None


class KarplusParams(_Frozen):
    frequency: float = _bounded("karplus.frequency")
    damping: float = _bounded("karplus.damping")
    inharmonicity: float = _bounded("karplus.inharmonicity")
    pluck_position: float | None = Field(default=None, ge=0.0, le=1.0)


class _LayerBase(_Frozen):
    gain: float = _bounded("layer.gain")
    envelope: Envelope | None = None
    filter: LayerFilter | None = None
    saturation: Saturation | None = None


class OscillatorLayer(_LayerBase):
    type: Literal["oscillator"] = "oscillator"
    oscillator: OscillatorParams = OscillatorParams()


class NoiseLayer(_LayerBase):
    type: Literal["noise"] = "noise"
    noise: NoiseParams = NoiseParams()


class FMLayer(_LayerBase):
    type: Literal["fm"] = "fm"
    fm: FMParams = FMParams()


class KarplusLayer(_LayerBase):
    type: Literal["karplus-strong"] = "karplus-strong"
    karplus: KarplusParams = KarplusParams()


Layer = Annotated[
    Union[OscillatorLayer, NoiseLayer, FMLayer, KarplusLayer],
    Field(discriminator="type"),
]


class LFO(_Frozen):
    waveform: LfoWaveform = "sine"
    frequency: float = _bounded("lfo.frequency")
    depth: float = _bounded("lfo.depth")
    target: LfoTarget = "filter"
    delay: float = _bounded("lfo.delay")
    fade: float = _bounded("lfo.fade")


class EQ(_Frozen):
    """Gains in dB for the fixed low shelf, mid peak and high shelf bands."""

    low: float = _bounded("eq.low")
    mid: float = _bounded("eq.mid")
    high: float = _bounded("eq.high")


class Distortion(_Frozen):
    type: DistortionType = "soft"
    amount: float = _bounded("distortion.amount")
    mix: float = _bounded("distortion.mix")


class Compressor(_Frozen):
    threshold: float = _bounded("compressor.threshold")
    ratio: float = _bounded("compressor.ratio")
    knee: float = _bounded("compressor.knee")
    attack: float = _bounded("compressor.attack")
    release: float = _bounded("compressor.release")


class Chorus(_Frozen):
    rate: float = _bounded("chorus.rate")
    depth: float = _bounded("chorus.depth")
    delay: float = _bounded("chorus.delay")
    mix: float = _bounded("chorus.mix")


class Delay(_Frozen):
    time: float = _bounded("delay.time")
    feedback: float = _bounded("delay.feedback")
    mix: float = _bounded("delay.mix")


class Reverb(_Frozen):
    decay: float = _bounded("reverb.decay")
    damping: float = _bounded("reverb.damping")
    mix: float = _bounded("reverb.mix")


class Gate(_Frozen):
    attack: float = _bounded("gate.attack")
    hold: float = _bounded("gate.hold")
    release: float = _bounded("gate.release")


class Effects(_Frozen):
    eq: EQ | None = None
    distortion: Distortion | None = None
    compressor: Compressor | None = None
    chorus: Chorus | None = None
    delay: Delay | None = None
    reverb: Reverb | None = None
    gate: Gate | None = None


class Timing(_Frozen):
    duration: float = _bounded("timing.duration")


class Dynamics(_Frozen):
    velocity: float = _bounded("dynamics.velocity")
    normalize: bool = True


class Metadata(_Frozen):
    name: str = "Untitled Sound"
    category: Category = "other"
    description: str = ""
    tags: tuple[str, ...] = ()


class SoundConfig(_Frozen):
    """Canonical, immutable description of one rendered sound."""

    layers: tuple[Layer, ...] = Field(
        default=(OscillatorLayer(),),
        min_length=1,
        max_length=MAX_LAYERS,
    )
    envelope: Envelope = Envelope()
    filter: GlobalFilter | None = None
    lfo: LFO | None = None
    effects: Effects = Effects()
    timing: Timing = Timing()
    dynamics: Dynamics = Dynamics()
    metadata: Metadata = Metadata()

    @model_validator(mode="after")
    def _check_fm_routes(self) -> "SoundConfig":
        for source, target in fm_routes(self.layers).items():
            if target == source or not 0 <= target < len(self.layers):
                raise ValueError(f"layer {source} modulates invalid layer {target}")
            if not isinstance(self.layers[target], FMLayer):
                raise ValueError(f"layer {source} modulates non-FM layer {target}")
        if _has_route_cycle(fm_routes(self.layers)):
            raise ValueError("FM modulation routes form a cycle")
        return self

    @property
    def duration(self) -> float:
        return self.timing.duration

    @property
    def has_layer_envelopes(self) -> bool:
        return any(layer.envelope is not None for layer in self.layers)


def fm_routes(layers: tuple[Any, ...] | list[Any]) -> dict[int, int]:
    """Map source layer index to the FM layer index it modulates."""

    routes: dict[int, int] = {}
    for index, layer in enumerate(layers):
        if isinstance(layer, FMLayer) and layer.fm.modulates_layer is not None:
            routes[index] = layer.fm.modulates_layer
    return routes


def _has_route_cycle(routes: Mapping[int, int]) -> bool:
    for start in routes:
        seen = {start}
        node = routes.get(start)
        while node is not None:
            if node in seen:
                return True
            seen.add(node)
            node = routes.get(node)
    return False


DEFAULT_SOUND_CONFIG = SoundConfig()
