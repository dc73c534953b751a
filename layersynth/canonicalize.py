"""Turn loosely-shaped sound documents into a canonical ``SoundConfig``.

Canonicalization runs in two phases:

1. Shape validation. The document must be an object whose nested sections are
   objects (and whose ``layers`` is a list of objects). Anything else raises
   ``InvalidConfigError`` with the parser's own message.
2. Clamp/default pass. Every value is coerced, clamped into ``BOUNDS`` or
   replaced by its default. Nothing raises here; each change is recorded as a
   ``Correction`` and logged at DEBUG.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import (
    BOUNDS,
    MAX_LAYERS,
    Category,
    DistortionType,
    FilterType,
    LayerFilterType,
    LayerType,
    LfoTarget,
    LfoWaveform,
    NoiseColor,
    SaturationType,
    SoundConfig,
    SubWaveform,
    Waveform,
    clamp,
)
from .errors import InvalidConfigError
from .logging_utils import debug_enabled

_LOGGER = logging.getLogger("layersynth.canonicalize")

RawConfig = Mapping[str, Any] | str | bytes | SoundConfig

_LAYER_TYPE_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "karplus": "karplus-strong",
        "karplus_strong": "karplus-strong",
        "karplusstrong": "karplus-strong",
        "osc": "oscillator",
    }
)
_PAYLOAD_KEYS: Mapping[str, str] = MappingProxyType(
    {
        "oscillator": "oscillator",
        "noise": "noise",
        "fm": "fm",
        "karplus-strong": "karplus",
    }
)

__all__ = [
    "CanonicalizeResult",
    "Correction",
    "RawConfig",
    "canonicalize",
    "canonicalize_with_report",
    "clamp",
]


class Correction(BaseModel):
    """One value the canonicalizer changed, with the reason."""

    path: str
    original: Any = None
    value: Any = None
    reason: str

    model_config = ConfigDict(frozen=True)


class CanonicalizeResult(BaseModel):
    config: SoundConfig
    corrections: tuple[Correction, ...] = ()

    model_config = ConfigDict(frozen=True)


# -----------------------------------------------------------------------------
# Phase 1: shape
# -----------------------------------------------------------------------------

_Object = dict[str, Any]


class _Shape(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class _FilterShape(_Shape):
    envelope: _Object | None = None


class _OscillatorShape(_Shape):
    unison: _Object | None = None
    sub: _Object | None = None


class _FMShape(_Shape):
    envelope: _Object | None = None


class _LayerShape(_Shape):
    envelope: _Object | None = None
    filter: _FilterShape | None = None
    saturation: _Object | None = None
    oscillator: _OscillatorShape | None = None
    noise: _Object | None = None
    fm: _FMShape | None = None
    karplus: _Object | None = None
    karplus_strong: _Object | None = Field(default=None, alias="karplus-strong")


class _EffectsShape(_Shape):
    eq: _Object | None = None
    distortion: _Object | None = None
    compressor: _Object | None = None
    chorus: _Object | None = None
    delay: _Object | None = None
    reverb: _Object | None = None
    gate: _Object | None = None


class _SynthesisShape(_Shape):
    layers: list[_LayerShape] | None = None
    filter: _FilterShape | None = None


class _DocumentShape(_Shape):
    layers: list[_LayerShape] | None = None
    synthesis: _SynthesisShape | None = None
    envelope: _Object | None = None
    filter: _FilterShape | None = None
    lfo: _Object | None = None
    effects: _EffectsShape | None = None
    timing: _Object | None = None
    dynamics: _Object | None = None
    metadata: _Object | None = None


def _decode_stringified(value: Any) -> Any:
    """Decode nested objects that arrive as JSON strings, recursively."""

    if isinstance(value, str):
        text = value.strip()
        if text.startswith("{") and text.endswith("}"):
            try:
                return _decode_stringified(json.loads(text))
            except json.JSONDecodeError:
                return value
        return value
    if isinstance(value, Mapping):
        return {key: _decode_stringified(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_decode_stringified(item) for item in value]
    return value


def _parse_shape(raw: RawConfig) -> dict[str, Any]:
    try:
        match raw:
            case SoundConfig():
                data: Any = raw.model_dump()
            case str() | bytes() | bytearray():
                data = json.loads(raw)
            case _:
                data = raw
        data = _decode_stringified(data)
    # JSONDecodeError, UnicodeDecodeError and the int digit limit are ValueErrors
    except (ValueError, RecursionError) as exc:
        _LOGGER.warning("Failed to parse config JSON: %s", exc, exc_info=debug_enabled())
        raise InvalidConfigError(str(exc) or type(exc).__name__) from exc
    try:
        shape = _DocumentShape.model_validate(data)
        return shape.model_dump(by_alias=True)
    except (ValidationError, RecursionError) as exc:
        _LOGGER.warning("Config has an invalid shape: %s", exc, exc_info=debug_enabled())
        raise InvalidConfigError(str(exc) or type(exc).__name__) from exc


# -----------------------------------------------------------------------------
# Phase 2: clamp and default
# -----------------------------------------------------------------------------


def _pick(data: Mapping[str, Any] | None, *keys: str) -> Any:
    if not data:
        return None
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _section(data: Mapping[str, Any] | None, *keys: str) -> dict[str, Any] | None:
    value = _pick(data, *keys)
    if isinstance(value, Mapping):
        return dict(value)
    return None


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _choices(literal: Any) -> tuple[str, ...]:
    return tuple(str(item) for item in get_args(literal))


class _Corrector:
    def __init__(self) -> None:
        self.corrections: list[Correction] = []

    def record(self, path: str, original: Any, value: Any, reason: str) -> None:
        self.corrections.append(
            Correction(path=path, original=original, value=value, reason=reason)
        )
        _LOGGER.debug("corrected %s: %r -> %r (%s)", path, original, value, reason)

    # -- scalars -------------------------------------------------------------

    def number(self, data: Mapping[str, Any] | None, path: str, field: str, *keys: str) -> Any:
        bound = BOUNDS[field]
        default = int(bound.default) if bound.integer else bound.default
        raw = _pick(data, *(keys or (field.rsplit(".", 1)[-1],)))
        if raw is None:
            return default
        value = _to_float(raw)
        if value is None:
            self.record(path, raw, default, "not a number")
            return default
        if not math.isfinite(value):
            self.record(path, raw, default, "not finite")
            return default
        clamped = bound.clamp(value)
        if clamped != value:
            self.record(
                path, raw, clamped, f"clamped to [{bound.minimum:g}, {bound.maximum:g}]"
            )
        return int(clamped) if bound.integer else clamped

    def choice(
        self,
        data: Mapping[str, Any] | None,
        path: str,
        allowed: tuple[str, ...],
        default: str,
        *keys: str,
        aliases: Mapping[str, str] | None = None,
    ) -> str:
        raw = _pick(data, *keys)
        if raw is None:
            return default
        if isinstance(raw, str):
            normalized = raw.strip().lower()
            if aliases is not None:
                normalized = aliases.get(normalized, normalized)
            if normalized in allowed:
                return normalized
        self.record(path, raw, default, "unknown value")
        return default

    def flag(self, data: Mapping[str, Any] | None, path: str, key: str, default: bool) -> bool:
        raw = _pick(data, key)
        if raw is None:
            return default
        if isinstance(raw, bool):
            return raw
        self.record(path, raw, default, "not a boolean")
        return default

    def text(self, data: Mapping[str, Any] | None, path: str, key: str, default: str) -> str:
        raw = _pick(data, key)
        if raw is None:
            return default
        if isinstance(raw, str):
            return raw
        self.record(path, raw, str(raw), "converted to text")
        return str(raw)

    # -- envelopes -----------------------------------------------------------

    def envelope(self, data: Mapping[str, Any] | None, path: str, duration: float) -> dict[str, Any]:
        attack = self.number(data, f"{path}.attack", "envelope.attack")
        decay = self.number(data, f"{path}.decay", "envelope.decay")
        total = attack + decay
        if total > duration:
            minimum = BOUNDS["envelope.attack"].minimum
            scale = duration / total
            fitted_attack = max(minimum, attack * scale)
            fitted_decay = max(minimum, min(decay * scale, duration - fitted_attack))
            # defaults that overflow a short sound are fitted silently
            if _pick(data, "attack", "decay") is not None:
                self.record(
                    f"{path}.attack+decay",
                    (attack, decay),
                    (fitted_attack, fitted_decay),
                    f"scaled to fit duration {duration:g}",
                )
            attack, decay = fitted_attack, fitted_decay
        return {
            "attack": attack,
            "decay": decay,
            "sustain": self.number(data, f"{path}.sustain", "envelope.sustain"),
            "release": self.number(data, f"{path}.release", "envelope.release"),
        }

    def filter_envelope(
        self, data: Mapping[str, Any] | None, path: str, duration: float
    ) -> dict[str, Any]:
        result = self.envelope(data, path, duration)
        result["amount"] = self.number(data, f"{path}.amount", "filter_envelope.amount")
        return result

    # -- filters and shapers -------------------------------------------------

    def _filter_common(
        self, data: Mapping[str, Any], path: str, duration: float
    ) -> dict[str, Any]:
        result: dict[str, Any] = {
            "frequency": self.number(data, f"{path}.frequency", "filter.frequency", "frequency", "cutoff"),
            "q": self.number(data, f"{path}.q", "filter.q", "q", "Q", "resonance"),
        }
        envelope = _section(data, "envelope")
        if envelope is not None:
            result["envelope"] = self.filter_envelope(envelope, f"{path}.envelope", duration)
        return result

    def layer_filter(self, data: Mapping[str, Any], path: str, duration: float) -> dict[str, Any]:
        result = {
            "type": self.choice(data, f"{path}.type", _choices(LayerFilterType), "lowpass", "type")
        }
        result.update(self._filter_common(data, path, duration))
        return result

    def global_filter(self, data: Mapping[str, Any], path: str, duration: float) -> dict[str, Any]:
        result = {"type": self.choice(data, f"{path}.type", _choices(FilterType), "lowpass", "type")}
        result.update(self._filter_common(data, path, duration))
        result["gain"] = self.number(data, f"{path}.gain", "filter.gain")
        return result

    def saturation(self, data: Mapping[str, Any], path: str) -> dict[str, Any]:
        return {
            "type": self.choice(data, f"{path}.type", _choices(SaturationType), "soft", "type"),
            "drive": self.number(data, f"{path}.drive", "saturation.drive"),
            "mix": self.number(data, f"{path}.mix", "saturation.mix"),
        }

    # -- payloads ------------------------------------------------------------

    def oscillator(self, data: Mapping[str, Any] | None, path: str) -> dict[str, Any]:
        result: dict[str, Any] = {
            "waveform": self.choice(
                data, f"{path}.waveform", _choices(Waveform), "sine", "waveform", "type"
            ),
            "frequency": self.number(data, f"{path}.frequency", "oscillator.frequency"),
            "detune": self.number(data, f"{path}.detune", "oscillator.detune"),
        }
        unison = _section(data, "unison")
        if unison is not None:
            result["unison"] = {
                "voices": self.number(unison, f"{path}.unison.voices", "unison.voices"),
                "detune": self.number(unison, f"{path}.unison.detune", "unison.detune"),
                "spread": self.number(unison, f"{path}.unison.spread", "unison.spread"),
            }
        sub = _section(data, "sub")
        if sub is not None:
            result["sub"] = {
                "level": self.number(sub, f"{path}.sub.level", "sub.level"),
                "octave": self.octave(sub, f"{path}.sub.octave"),
                "waveform": self.choice(
                    sub, f"{path}.sub.waveform", _choices(SubWaveform), "sine", "waveform"
                ),
            }
        return result

    def octave(self, data: Mapping[str, Any], path: str) -> int:
        raw = _pick(data, "octave")
        if raw is None:
            return -1
        value = _to_float(raw)
        if value is None or not math.isfinite(value):
            self.record(path, raw, -1, "not a number")
            return -1
        octave = -abs(int(round(value)))
        octave = min(-1, max(-2, octave))
        if octave != value:
            self.record(path, raw, octave, "octave must be -1 or -2")
        return octave

    def noise(self, data: Mapping[str, Any] | None, path: str) -> dict[str, Any]:
        return {
            "type": self.choice(
                data, f"{path}.type", _choices(NoiseColor), "white", "type", "color", "noiseType"
            )
        }

    def fm(self, data: Mapping[str, Any] | None, path: str, duration: float) -> dict[str, Any]:
        data = dict(data or {})
        carrier_raw = _pick(data, "carrier", "carrierFrequency")
        if isinstance(carrier_raw, Mapping):
            carrier_raw = carrier_raw.get("frequency")
        modulator_raw = _pick(data, "modulator", "modulatorFrequency")
        if isinstance(modulator_raw, Mapping):
            data.setdefault("modulationIndex", modulator_raw.get("modulationIndex"))
            modulator_raw = modulator_raw.get("frequency")

        carrier = self.number({"carrier": carrier_raw}, f"{path}.carrier", "fm.carrier")
        ratio_raw = _pick(data, "ratio")
        if ratio_raw is None and modulator_raw is not None:
            modulator = _to_float(modulator_raw)
            if modulator is not None and math.isfinite(modulator) and modulator > 0:
                ratio_raw = modulator / carrier
                self.record(f"{path}.ratio", modulator_raw, ratio_raw, "derived from modulator frequency")
        result: dict[str, Any] = {
            "carrier": carrier,
            "ratio": self.number({"ratio": ratio_raw}, f"{path}.ratio", "fm.ratio"),
            "modulation_index": self.number(
                data, f"{path}.modulation_index", "fm.modulation_index", "modulation_index", "modulationIndex"
            ),
            "feedback": self.number(data, f"{path}.feedback", "fm.feedback"),
            "modulates_layer": self.layer_index(
                data, f"{path}.modulates_layer", "modulates_layer", "modulatesLayer"
            ),
        }
        envelope = _section(data, "envelope")
        if envelope is not None:
            result["envelope"] = self.envelope(envelope, f"{path}.envelope", duration)
        return result

    def layer_index(self, data: Mapping[str, Any], path: str, *keys: str) -> int | None:
        raw = _pick(data, *keys)
        if raw is None:
            return None
        value = _to_float(raw)
        if value is None or not math.isfinite(value) or value != int(value):
            self.record(path, raw, None, "not a layer index")
            return None
        return int(value)

    def karplus(self, data: Mapping[str, Any] | None, path: str) -> dict[str, Any]:
        result: dict[str, Any] = {
            "frequency": self.number(data, f"{path}.frequency", "karplus.frequency"),
            "damping": self.number(data, f"{path}.damping", "karplus.damping"),
            "inharmonicity": self.number(data, f"{path}.inharmonicity", "karplus.inharmonicity"),
        }
        if _pick(data, "pluck_position", "pluckPosition", "pluckLocation") is not None:
            result["pluck_position"] = self.number(
                data,
                f"{path}.pluck_position",
                "karplus.pluck_position",
                "pluck_position",
                "pluckPosition",
                "pluckLocation",
            )
        return result

    # -- layers --------------------------------------------------------------

    def layer(self, data: Mapping[str, Any], index: int, duration: float) -> dict[str, Any]:
        path = f"layers[{index}]"
        layer_type = self.choice(
            data,
            f"{path}.type",
            _choices(LayerType),
            "oscillator",
            "type",
            aliases=_LAYER_TYPE_ALIASES,
        )
        result: dict[str, Any] = {
            "type": layer_type,
            "gain": self.number(data, f"{path}.gain", "layer.gain"),
        }
        envelope = _section(data, "envelope")
        if envelope is not None:
            result["envelope"] = self.envelope(envelope, f"{path}.envelope", duration)
        layer_filter = _section(data, "filter")
        if layer_filter is not None:
            result["filter"] = self.layer_filter(layer_filter, f"{path}.filter", duration)
        saturation = _section(data, "saturation")
        if saturation is not None:
            result["saturation"] = self.saturation(saturation, f"{path}.saturation")

        payload_key = _PAYLOAD_KEYS[layer_type]
        payload_path = f"{path}.{payload_key}"
        match layer_type:
            case "oscillator":
                payload = _section(data, "oscillator")
                result["oscillator"] = self.oscillator(payload, payload_path)
            case "noise":
                payload = _section(data, "noise")
                result["noise"] = self.noise(payload, payload_path)
            case "fm":
                payload = _section(data, "fm")
                if payload is None and _pick(data, "carrier", "modulator") is not None:
                    payload = dict(data)
                result["fm"] = self.fm(payload, payload_path, duration)
            case _:
                payload = _section(data, "karplus", "karplus-strong")
                result["karplus"] = self.karplus(payload, payload_path)

        if payload is None:
            for other in ("oscillator", "noise", "fm", "karplus", "karplus-strong"):
                if other != payload_key and _section(data, other) is not None:
                    self.record(
                        f"{path}.{other}",
                        other,
                        None,
                        f"payload does not match layer type {layer_type!r}; using defaults",
                    )
        return result

    def layers(self, document: Mapping[str, Any], duration: float) -> list[dict[str, Any]]:
        raw_layers = document.get("layers")
        if raw_layers is None:
            raw_layers = _pick(document.get("synthesis"), "layers")
        if raw_layers is None:
            raw_layers = []
            missing = True
        else:
            missing = False
        if not raw_layers:
            if not missing:
                self.record("layers", [], "default layer", "empty layer list")
            return [self.layer({"type": "oscillator", "oscillator": {}}, 0, duration)]
        if len(raw_layers) > MAX_LAYERS:
            self.record(
                "layers", len(raw_layers), MAX_LAYERS, f"truncated to the first {MAX_LAYERS} layers"
            )
            raw_layers = raw_layers[:MAX_LAYERS]
        return [self.layer(layer, index, duration) for index, layer in enumerate(raw_layers)]

    def fm_routes(self, layers: list[dict[str, Any]]) -> None:
        """Drop invalid or cyclic FM routes, then silence routed sources."""

        accepted: dict[int, int] = {}
        for index, layer in enumerate(layers):
            if layer["type"] != "fm":
                continue
            params = layer["fm"]
            target = params.get("modulates_layer")
            if target is None:
                continue
            path = f"layers[{index}].fm.modulates_layer"
            reason: str | None = None
            if target == index:
                reason = "layer cannot modulate itself"
            elif not 0 <= target < len(layers):
                reason = "no such layer"
            elif layers[target]["type"] != "fm":
                reason = "target is not an FM layer"
            elif _creates_cycle(accepted, index, target):
                reason = "modulation routes would form a cycle"
            if reason is not None:
                params["modulates_layer"] = None
                self.record(path, target, None, reason)
                continue
            accepted[index] = target

        for index in accepted:
            layer = layers[index]
            if layer["gain"] != 0.0:
                self.record(
                    f"layers[{index}].gain", layer["gain"], 0.0, "routed FM layer is not mixed"
                )
                layer["gain"] = 0.0

    # -- global sections -----------------------------------------------------

    def lfo(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "waveform": self.choice(data, "lfo.waveform", _choices(LfoWaveform), "sine", "waveform"),
            "frequency": self.number(data, "lfo.frequency", "lfo.frequency", "frequency", "rate"),
            "depth": self.number(data, "lfo.depth", "lfo.depth"),
            "target": self.choice(data, "lfo.target", _choices(LfoTarget), "filter", "target"),
            "delay": self.number(data, "lfo.delay", "lfo.delay"),
            "fade": self.number(data, "lfo.fade", "lfo.fade"),
        }

    def effects(self, data: Mapping[str, Any] | None) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if (eq := _section(data, "eq")) is not None:
            result["eq"] = {
                band: self.number(eq, f"effects.eq.{band}", f"eq.{band}")
                for band in ("low", "mid", "high")
            }
        if (distortion := _section(data, "distortion")) is not None:
            result["distortion"] = {
                "type": self.choice(
                    distortion, "effects.distortion.type", _choices(DistortionType), "soft", "type"
                ),
                "amount": self.number(distortion, "effects.distortion.amount", "distortion.amount"),
                "mix": self.number(distortion, "effects.distortion.mix", "distortion.mix"),
            }
        if (compressor := _section(data, "compressor")) is not None:
            result["compressor"] = {
                name: self.number(compressor, f"effects.compressor.{name}", f"compressor.{name}")
                for name in ("threshold", "ratio", "knee", "attack", "release")
            }
        if (chorus := _section(data, "chorus")) is not None:
            result["chorus"] = {
                name: self.number(chorus, f"effects.chorus.{name}", f"chorus.{name}")
                for name in ("rate", "depth", "delay", "mix")
            }
        if (delay := _section(data, "delay")) is not None:
            result["delay"] = {
                name: self.number(delay, f"effects.delay.{name}", f"delay.{name}")
                for name in ("time", "feedback", "mix")
            }
        if (reverb := _section(data, "reverb")) is not None:
            result["reverb"] = {
                "decay": self.number(reverb, "effects.reverb.decay", "reverb.decay", "decay", "size"),
                "damping": self.number(reverb, "effects.reverb.damping", "reverb.damping"),
                "mix": self.number(reverb, "effects.reverb.mix", "reverb.mix"),
            }
        if (gate := _section(data, "gate")) is not None:
            result["gate"] = {
                name: self.number(gate, f"effects.gate.{name}", f"gate.{name}")
                for name in ("attack", "hold", "release")
            }
        return result

    def metadata(self, data: Mapping[str, Any] | None) -> dict[str, Any]:
        tags_raw = _pick(data, "tags")
        tags: list[str] = []
        if isinstance(tags_raw, Sequence) and not isinstance(tags_raw, str):
            tags = [str(tag) for tag in tags_raw]
        elif tags_raw is not None:
            self.record("metadata.tags", tags_raw, [], "not a list")
        return {
            "name": self.text(data, "metadata.name", "name", "Untitled Sound"),
            "category": self.choice(data, "metadata.category", _choices(Category), "other", "category"),
            "description": self.text(data, "metadata.description", "description", ""),
            "tags": tags,
        }

    def document(self, document: Mapping[str, Any]) -> dict[str, Any]:
        duration = self.number(document.get("timing"), "timing.duration", "timing.duration")
        layers = self.layers(document, duration)
        self.fm_routes(layers)
        result: dict[str, Any] = {
            "layers": layers,
            "envelope": self.envelope(document.get("envelope"), "envelope", duration),
            "effects": self.effects(document.get("effects")),
            "timing": {"duration": duration},
            "dynamics": {
                "velocity": self.number(document.get("dynamics"), "dynamics.velocity", "dynamics.velocity"),
                "normalize": self.flag(document.get("dynamics"), "dynamics.normalize", "normalize", True),
            },
            "metadata": self.metadata(document.get("metadata")),
        }
        global_filter = _section(document, "filter") or _section(document.get("synthesis"), "filter")
        if global_filter is not None:
            result["filter"] = self.global_filter(global_filter, "filter", duration)
        lfo = _section(document, "lfo")
        if lfo is not None:
            result["lfo"] = self.lfo(lfo)
        return result


def _creates_cycle(routes: Mapping[int, int], source: int, target: int) -> bool:
    node: int | None = target
    while node is not None:
        if node == source:
            return True
        node = routes.get(node)
    return False


def canonicalize_with_report(raw: RawConfig) -> CanonicalizeResult:
    """Validate the document's shape, then clamp and default every value."""

    document = _parse_shape(raw)
    corrector = _Corrector()
    canonical = corrector.document(document)
    try:
        config = SoundConfig.model_validate(canonical)
    except ValidationError as exc:
        _LOGGER.warning("Canonical config failed validation: %s", exc, exc_info=debug_enabled())
        raise InvalidConfigError(str(exc)) from exc
    if corrector.corrections:
        _LOGGER.debug("canonicalize applied %d corrections", len(corrector.corrections))
    return CanonicalizeResult(config=config, corrections=tuple(corrector.corrections))


def canonicalize(raw: RawConfig) -> SoundConfig:
    return canonicalize_with_report(raw).config
