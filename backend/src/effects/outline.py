"""Outline effect — keyframed outline around a subject with transparent background.

Owns five keyframe curves (width, red, green, blue, alpha). At each frame the
curves are resolved to scalars and handed to the pure pixel pipeline in
effects.fx.outline.
"""

import logging

from effects.base import EffectBase, add_property_json
from effects.fx import outline as outline_fx
from engine.frame import Frame
from engine.keyframe import Keyframe
from project.schema import CURVE_KEYS

logger = logging.getLogger(__name__)


def _as_keyframe(value: Keyframe | float) -> Keyframe:
    if isinstance(value, Keyframe):
        return value
    return Keyframe(float(value))


class Outline(EffectBase):
    """Add an outline around an image with a transparent background."""

    class_name = "Outline"
    name = "Outline"
    description = "Add outline around the image with transparent background."

    def __init__(
        self,
        width: Keyframe | float = 3.0,
        red: Keyframe | float = 0.0,
        green: Keyframe | float = 0.0,
        blue: Keyframe | float = 0.0,
        alpha: Keyframe | float = 255.0,
    ):
        super().__init__()
        self.width = _as_keyframe(width)
        self.red = _as_keyframe(red)
        self.green = _as_keyframe(green)
        self.blue = _as_keyframe(blue)
        self.alpha = _as_keyframe(alpha)

    def curves(self) -> dict[str, Keyframe]:
        return {key: getattr(self, key) for key in CURVE_KEYS}

    def resolve(self, frame_number: int) -> dict[str, float]:
        """Current value of every curve at a frame."""
        return {key: kf.get_value(frame_number) for key, kf in self.curves().items()}

    def get_frame(self, frame: Frame, frame_number: int) -> Frame:
        """Outline the frame's subject in place and return the same frame."""
        values = outline_fx.clamp_params(self.resolve(frame_number))
        logger.debug(
            "Outline frame %d: width=%.2f rgba=(%.0f, %.0f, %.0f, %.0f)",
            frame_number,
            values["width"],
            values["red"],
            values["green"],
            values["blue"],
            values["alpha"],
        )
        frame.add_image(outline_fx.render(frame.get_image(), **values))
        return frame

    # --- JSON persistence ---

    def json_value(self) -> dict:
        root = super().json_value()
        for key, kf in self.curves().items():
            root[key] = kf.json_value()
        return root

    def set_json_value(self, root: dict):
        """Apply present keys. Curves are parsed before anything is changed."""
        staged = {
            key: Keyframe.parse_points(root[key])
            for key in CURVE_KEYS
            if root.get(key) is not None
        }
        super().set_json_value(root)
        for key, points in staged.items():
            getattr(self, key).points = sorted(points, key=lambda p: p.x)

    # --- Property introspection ---

    def properties(self, requested_frame: int) -> dict:
        props = self.base_properties(requested_frame)
        for key, kf in self.curves().items():
            param = outline_fx.PARAMS[key]
            props[key] = add_property_json(
                param["label"],
                kf.get_value(requested_frame),
                param["type"],
                "",
                kf,
                param["min"],
                param["max"],
                False,
                requested_frame,
            )
        return props
