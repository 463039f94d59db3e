from .color_transform import LUMA_WEIGHTS, TransformKind, apply, parse_transform_kind
from .editor import StillEditor

__all__ = ["LUMA_WEIGHTS", "StillEditor", "TransformKind", "apply", "parse_transform_kind"]
