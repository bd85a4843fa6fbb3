"""Effect base — common surface for keyframed frame effects.

Every effect in the family exposes one capability to the engine:
``get_frame(frame, frame_number)``, which replaces the frame's pixels in place.
The rest of this class is persistence (JSON documents) and per-frame property
introspection for an editing UI.
"""

import json
import uuid

from engine.frame import Frame
from engine.keyframe import Keyframe
from project import schema

MAX_TIMELINE_VALUE = 48 * 60 * 60  # 48 hours in seconds


def add_property_json(
    name: str,
    value: float,
    type_: str,
    memo: str,
    keyframe: Keyframe | None,
    min_value: float,
    max_value: float,
    readonly: bool,
    requested_frame: int,
) -> dict:
    """Describe one property at a frame for an editing surface."""
    prop = {
        "name": name,
        "value": value,
        "memo": memo,
        "type": type_,
        "min": min_value,
        "max": max_value,
        "readonly": readonly,
        "keyframe": False,
        "points": 0,
        "interpolation": None,
        "closest_point_x": None,
    }
    if keyframe is not None:
        closest = keyframe.closest_point(requested_frame)
        prop["keyframe"] = keyframe.contains_point(requested_frame)
        prop["points"] = len(keyframe.points)
        if closest is not None:
            prop["interpolation"] = closest.interpolation
            prop["closest_point_x"] = closest.x
        prop["curve"] = keyframe.json_value()
    return prop


class EffectBase:
    """Base class for keyframed effects."""

    class_name = "EffectBase"
    name = ""
    description = ""
    has_video = True
    has_audio = False

    def __init__(self):
        self.id = str(uuid.uuid4())
        self.position = 0.0
        self.layer = 0
        self.start = 0.0
        self.end = 0.0
        self.order = 0

    def get_frame(self, frame: Frame, frame_number: int) -> Frame:
        raise NotImplementedError

    # --- JSON persistence ---

    def json(self) -> str:
        return schema.serialize(self.json_value())

    def json_value(self) -> dict:
        return {
            "type": self.class_name,
            "id": self.id,
            "position": self.position,
            "layer": self.layer,
            "start": self.start,
            "end": self.end,
            "order": self.order,
            "class_name": self.class_name,
            "name": self.name,
            "description": self.description,
            "has_video": self.has_video,
            "has_audio": self.has_audio,
        }

    def set_json(self, value: str):
        """Load a JSON string into this effect.

        Raises InvalidJSON and leaves the effect unchanged if the document
        cannot be parsed or has wrong data types. Missing keys are not errors.
        """
        self.load(schema.parse(value))

    def load(self, root: dict):
        """Validate and apply a parsed document. Raises InvalidJSON."""
        errors = schema.validate_effect(root)
        if errors:
            raise schema.InvalidJSON(f"Invalid effect: {'; '.join(errors)}", errors)
        try:
            self.set_json_value(root)
        except (TypeError, ValueError, OverflowError) as e:
            raise schema.InvalidJSON(
                "JSON is invalid (missing keys or invalid data types)"
            ) from e

    def set_json_value(self, root: dict):
        """Apply base fields present in the document. All-or-nothing."""
        casts = {
            "id": str,
            "position": float,
            "layer": int,
            "start": float,
            "end": float,
            "order": int,
        }
        updates = {
            key: cast(root[key])
            for key, cast in casts.items()
            if root.get(key) is not None
        }
        for key, value in updates.items():
            setattr(self, key, value)

    # --- Property introspection ---

    def base_properties(self, requested_frame: int) -> dict:
        """Read-only timeline fields, described like keyframed properties."""
        fields = (
            ("position", "Position", "float", self.position),
            ("layer", "Track", "int", self.layer),
            ("start", "Start", "float", self.start),
            ("end", "End", "float", self.end),
            ("duration", "Duration", "float", self.end - self.start),
            ("order", "Order", "int", self.order),
        )
        props = {
            "id": add_property_json(
                "ID", 0.0, "string", self.id, None, -1, -1, True, requested_frame
            )
        }
        for key, label, type_, value in fields:
            props[key] = add_property_json(
                label,
                value,
                type_,
                "",
                None,
                0,
                MAX_TIMELINE_VALUE,
                True,
                requested_frame,
            )
        return props

    def properties_json(self, requested_frame: int) -> str:
        return json.dumps(self.properties(requested_frame), indent=2)

    def properties(self, requested_frame: int) -> dict:
        return self.base_properties(requested_frame)
