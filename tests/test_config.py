from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from layersynth.config import (
    BOUNDS,
    DEFAULT_SOUND_CONFIG,
    MAX_LAYERS,
    Delay,
    Envelope,
    FMLayer,
    FMParams,
    NoiseLayer,
    OscillatorLayer,
    SoundConfig,
    clamp,
    fm_routes,
)


def test_default_config_matches_documented_defaults() -> None:
    config = DEFAULT_SOUND_CONFIG
    assert len(config.layers) == 1
    layer = config.layers[0]
    assert isinstance(layer, OscillatorLayer)
    assert layer.oscillator.waveform == "sine"
    assert layer.oscillator.frequency == 440.0
    assert layer.gain == 1.0
    assert config.envelope == Envelope(attack=0.01, decay=0.1, sustain=0.5, release=0.3)
    assert config.duration == 1.0
    assert config.dynamics.velocity == pytest.approx(0.8)
    assert config.dynamics.normalize is True
    assert config.metadata.name == "Untitled Sound"
    assert config.metadata.category == "other"


def test_models_are_frozen() -> None:
    with pytest.raises(ValidationError):
        DEFAULT_SOUND_CONFIG.timing.duration = 2.0  # type: ignore[misc]


def test_layers_are_discriminated_by_type() -> None:
    config = SoundConfig.model_validate(
        {"layers": [{"type": "noise", "noise": {"type": "pink"}}, {"type": "fm"}]}
    )
    assert isinstance(config.layers[0], NoiseLayer)
    assert config.layers[0].noise.type == "pink"
    assert isinstance(config.layers[1], FMLayer)


def test_layer_count_is_bounded() -> None:
    with pytest.raises(ValidationError):
        SoundConfig(layers=())
    with pytest.raises(ValidationError):
        SoundConfig(layers=tuple(OscillatorLayer() for _ in range(MAX_LAYERS + 1)))


def test_model_fields_reject_out_of_range_values() -> None:
    with pytest.raises(ValidationError):
        Delay(feedback=0.95)
    with pytest.raises(ValidationError):
        Envelope(attack=0.0)


def test_fm_route_must_target_another_fm_layer() -> None:
    with pytest.raises(ValidationError):
        SoundConfig(layers=(FMLayer(fm=FMParams(modulates_layer=0)),))
    with pytest.raises(ValidationError):
        SoundConfig(layers=(FMLayer(fm=FMParams(modulates_layer=1)), OscillatorLayer()))
    with pytest.raises(ValidationError):
        SoundConfig(
            layers=(
                FMLayer(fm=FMParams(modulates_layer=1)),
                FMLayer(fm=FMParams(modulates_layer=0)),
            )
        )


def test_fm_routes_lists_sources() -> None:
    config = SoundConfig(
        layers=(FMLayer(gain=0.0, fm=FMParams(modulates_layer=1)), FMLayer(), NoiseLayer())
    )
    assert fm_routes(config.layers) == {0: 1}


def test_has_layer_envelopes() -> None:
    assert DEFAULT_SOUND_CONFIG.has_layer_envelopes is False
    config = SoundConfig(layers=(OscillatorLayer(envelope=Envelope()),))
    assert config.has_layer_envelopes is True


class TestClamp:
    """clamp() keeps every bounded field inside its documented range."""

    @pytest.mark.parametrize("field", sorted(BOUNDS))
    def test_idempotent_and_in_range(self, field: str) -> None:
        bound = BOUNDS[field]
        for raw in (-1e9, bound.minimum - 1.0, bound.default, bound.maximum + 1.0, 1e9):
            once = clamp(field, raw)
            assert bound.minimum <= once <= bound.maximum
            assert clamp(field, once) == once

    @pytest.mark.parametrize("field", sorted(BOUNDS))
    def test_in_range_value_is_unchanged(self, field: str) -> None:
        bound = BOUNDS[field]
        midpoint = (bound.minimum + bound.maximum) / 2
        if bound.integer:
            midpoint = float(round(midpoint))
        assert clamp(field, midpoint) == midpoint

    def test_non_finite_takes_default(self) -> None:
        assert clamp("delay.feedback", math.nan) == BOUNDS["delay.feedback"].default
        assert clamp("timing.duration", math.inf) == BOUNDS["timing.duration"].default

    def test_feedback_stays_below_point_nine(self) -> None:
        assert clamp("delay.feedback", 0.95) < 0.9

    def test_integer_fields_round(self) -> None:
        assert clamp("unison.voices", 3.6) == 4.0
        assert clamp("unison.voices", 0) == 1.0

    def test_unknown_field(self) -> None:
        with pytest.raises(KeyError):
            clamp("nope.nothing", 1.0)
