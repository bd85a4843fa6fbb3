"""Effect document schema — parse/validate/serialize effect JSON."""

import json
import math

CURVE_KEYS = ("width", "red", "green", "blue", "alpha")

BASE_NUMBER_KEYS = ("position", "layer", "start", "end", "order")


class InvalidJSON(ValueError):
    """Effect document could not be parsed or has wrong data types."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


def parse(data: str) -> dict:
    """Parse a JSON string into a document root. Raises InvalidJSON."""
    try:
        root = json.loads(data)
    except (json.JSONDecodeError, TypeError) as e:
        raise InvalidJSON(f"JSON is invalid: {e}") from e
    if not isinstance(root, dict):
        raise InvalidJSON(
            f"JSON is invalid: expected an object, got {type(root).__name__}"
        )
    return root


def validate_effect(root: dict) -> list[str]:
    """Validate an effect document. Returns list of error strings (empty = valid).

    Every key is optional; only the types of present keys are checked.
    """
    errors = []

    if "type" in root and not isinstance(root["type"], str):
        errors.append("'type' must be a string")

    if "id" in root and not isinstance(root["id"], str):
        errors.append("'id' must be a string")

    for key in BASE_NUMBER_KEYS:
        value = root.get(key)
        if value is not None and (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or (isinstance(value, float) and not math.isfinite(value))
        ):
            errors.append(f"'{key}' must be a finite number")

    for key in CURVE_KEYS:
        curve = root.get(key)
        if curve is None:
            continue
        if not isinstance(curve, dict):
            errors.append(f"'{key}' must be a keyframe object")
        elif not isinstance(curve.get("Points", []), list):
            errors.append(f"'{key}.Points' must be a list")

    return errors


def serialize(root: dict) -> str:
    """Serialize an effect document to a JSON string."""
    return json.dumps(root, indent=2)


def deserialize(data: str) -> dict:
    """Parse and validate an effect document. Raises InvalidJSON."""
    root = parse(data)
    errors = validate_effect(root)
    if errors:
        raise InvalidJSON(f"Invalid effect: {'; '.join(errors)}", errors)
    return root
