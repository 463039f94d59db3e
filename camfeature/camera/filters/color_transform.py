"""Per-pixel color transforms applied to captured stills."""

from __future__ import annotations

from enum import Enum

import numpy as np

from ..capture.frame import PixelSurface
from ..defaults import CHANNEL_MAX


class TransformKind(Enum):
    NONE = "none"
    GRAYSCALE = "grayscale"
    SEPIA_TINT = "sepia"
    INVERT = "invert"


# Rec. 709 luma weights; they sum to 1 so gray pixels map to themselves.
LUMA_WEIGHTS = np.array([0.213, 0.715, 0.072], dtype=np.float64)
SEPIA_SCALE = np.array([1.0, 0.8, 0.5], dtype=np.float64)

_ALIASES = {
    "none": TransformKind.NONE,
    "original": TransformKind.NONE,
    "grayscale": TransformKind.GRAYSCALE,
    "greyscale": TransformKind.GRAYSCALE,
    "gray": TransformKind.GRAYSCALE,
    "grey": TransformKind.GRAYSCALE,
    "sepia": TransformKind.SEPIA_TINT,
    "sepia_tint": TransformKind.SEPIA_TINT,
    "invert": TransformKind.INVERT,
    "negative": TransformKind.INVERT,
}


def parse_transform_kind(name: str) -> TransformKind:
    """Resolve a config/CLI name such as ``gray`` or ``SEPIA_TINT``."""
    key = name.strip().lower().replace("-", "_")
    try:
        return _ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown filter '{name}', expected one of {sorted(_ALIASES)}") from None


def _to_channel(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, CHANNEL_MAX).astype(np.uint8)


def apply(surface: PixelSurface, kind: TransformKind) -> PixelSurface:
    """Return ``surface`` transformed by ``kind``.

    ``NONE`` returns ``surface`` itself; every other kind allocates a new
    surface and leaves the input untouched. Alpha is never modified.
    """
    if kind is TransformKind.NONE:
        return surface

    src = surface.pixels
    out = np.empty_like(src)
    out[..., 3] = src[..., 3]
    rgb = src[..., :3]

    if kind is TransformKind.GRAYSCALE:
        luma = _to_channel(rgb.astype(np.float64) @ LUMA_WEIGHTS)
        out[..., 0] = luma
        out[..., 1] = luma
        out[..., 2] = luma
    elif kind is TransformKind.SEPIA_TINT:
        out[..., :3] = _to_channel(rgb.astype(np.float64) * SEPIA_SCALE)
    elif kind is TransformKind.INVERT:
        out[..., :3] = CHANNEL_MAX - rgb
    else:
        raise ValueError(f"Unsupported transform {kind!r}")

    return PixelSurface(out, captured_at=surface.captured_at)


__all__ = ["LUMA_WEIGHTS", "SEPIA_SCALE", "TransformKind", "apply", "parse_transform_kind"]
