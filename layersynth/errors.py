from __future__ import annotations


class LayerSynthError(Exception):
    """Base error for the layersynth library."""


class InvalidConfigError(LayerSynthError):
    """Raised when a sound config document has the wrong shape or cannot be parsed."""


class RenderError(LayerSynthError):
    """Raised when the engine fails while rendering a canonical config."""
