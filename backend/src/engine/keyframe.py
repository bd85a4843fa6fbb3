"""Keyframe curves — time-indexed scalar parameters for effects.

A Keyframe is a sorted list of points (frame number, value). Values between
points are interpolated using the interpolation mode of the left point;
outside the point range the nearest end value is held.

JSON shape (one curve):
    {"Points": [{"co": {"X": 1, "Y": 3.0}, "interpolation": 1}, ...]}

where interpolation is 0 = bezier, 1 = linear, 2 = constant.
"""

import bisect
import math

BEZIER = "bezier"
LINEAR = "linear"
CONSTANT = "constant"

# Interpolation ids used in curve documents
INTERPOLATION_IDS = {BEZIER: 0, LINEAR: 1, CONSTANT: 2}
INTERPOLATION_NAMES = {v: k for k, v in INTERPOLATION_IDS.items()}

# Default cubic handles (ease-in-out), normalized 0-1 space
DEFAULT_HANDLE_LEFT = (0.42, 0.0)
DEFAULT_HANDLE_RIGHT = (0.58, 1.0)


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def _bezier(a: float, b: float, t: float) -> float:
    """Cubic bezier ease between a and b with the default handles.

    Solves x(u) = t by Newton iteration, then evaluates y(u).
    """
    cp1, cp2 = DEFAULT_HANDLE_LEFT, DEFAULT_HANDLE_RIGHT
    u = t
    for _ in range(8):
        x_u = 3.0 * (1 - u) ** 2 * u * cp1[0] + 3.0 * (1 - u) * u**2 * cp2[0] + u**3
        dx = (
            3.0 * (1 - u) ** 2 * cp1[0]
            + 6.0 * (1 - u) * u * (cp2[0] - cp1[0])
            + 3.0 * u**2 * (1 - cp2[0])
        )
        if abs(dx) < 1e-10:
            break
        u = max(0.0, min(1.0, u - (x_u - t) / dx))

    y = 3.0 * (1 - u) ** 2 * u * cp1[1] + 3.0 * (1 - u) * u**2 * cp2[1] + u**3
    return a + (b - a) * y


class Point:
    """One keyframe point."""

    __slots__ = ("x", "y", "interpolation")

    def __init__(self, x: float, y: float, interpolation: str = LINEAR):
        if interpolation not in INTERPOLATION_IDS:
            raise ValueError(f"unknown interpolation: {interpolation}")
        self.x = float(x)
        self.y = float(y)
        self.interpolation = interpolation

    def __eq__(self, other) -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return (self.x, self.y, self.interpolation) == (
            other.x,
            other.y,
            other.interpolation,
        )

    def __repr__(self) -> str:
        return f"Point({self.x:g}, {self.y:g}, {self.interpolation!r})"

    def json_value(self) -> dict:
        return {
            "co": {"X": self.x, "Y": self.y},
            "interpolation": INTERPOLATION_IDS[self.interpolation],
        }

    @classmethod
    def from_json_value(cls, root: dict) -> "Point":
        """Build a point from its document. Raises ValueError if malformed."""
        if not isinstance(root, dict):
            raise ValueError("point must be an object")
        co = root.get("co")
        if not isinstance(co, dict) or "X" not in co or "Y" not in co:
            raise ValueError("point is missing 'co' coordinates")
        try:
            x = float(co["X"])
            y = float(co["Y"])
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"point coordinates must be numbers: {e}") from e
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValueError("point coordinates must be finite")
        interp_id = root.get("interpolation", INTERPOLATION_IDS[BEZIER])
        if (
            isinstance(interp_id, bool)
            or not isinstance(interp_id, int)
            or interp_id not in INTERPOLATION_NAMES
        ):
            raise ValueError(f"unknown interpolation id: {interp_id!r}")
        return cls(x, y, INTERPOLATION_NAMES[interp_id])


class Keyframe:
    """A time-varying scalar: frame number -> float.

    Reads never mutate the curve, so concurrent get_value() calls for
    different frames are safe.
    """

    def __init__(self, value: float | None = None):
        self.points: list[Point] = []
        if value is not None:
            self.add_point(1, value)

    def __repr__(self) -> str:
        return f"Keyframe({self.points!r})"

    def add_point(self, x: float, y: float, interpolation: str = LINEAR):
        """Add a point, replacing any existing point at the same frame."""
        point = Point(x, y, interpolation)
        self.points = [p for p in self.points if p.x != point.x]
        xs = [p.x for p in self.points]
        self.points.insert(bisect.bisect_left(xs, point.x), point)

    def remove_point(self, x: float):
        self.points = [p for p in self.points if p.x != float(x)]

    def get_value(self, frame: float) -> float:
        """Interpolated value at a frame. An empty curve evaluates to 0.0."""
        if not self.points:
            return 0.0

        first, last = self.points[0], self.points[-1]
        if frame <= first.x:
            return first.y
        if frame >= last.x:
            return last.y

        xs = [p.x for p in self.points]
        i = bisect.bisect_right(xs, frame) - 1
        left, right = self.points[i], self.points[i + 1]
        t = (frame - left.x) / (right.x - left.x)

        if left.interpolation == CONSTANT:
            return left.y
        if left.interpolation == BEZIER:
            return _bezier(left.y, right.y, t)
        return _lerp(left.y, right.y, t)

    def get_int(self, frame: float) -> int:
        return int(round(self.get_value(frame)))

    def contains_point(self, frame: float) -> bool:
        return any(p.x == float(frame) for p in self.points)

    def closest_point(self, frame: float) -> Point | None:
        """Nearest point at or after the frame, else the last point."""
        for p in self.points:
            if p.x >= frame:
                return p
        return self.points[-1] if self.points else None

    def json_value(self) -> dict:
        return {"Points": [p.json_value() for p in self.points]}

    def set_json_value(self, root: dict):
        """Replace all points from a curve document.

        Raises ValueError without modifying the curve if any point is bad.
        """
        points = self.parse_points(root)
        self.points = sorted(points, key=lambda p: p.x)

    @staticmethod
    def parse_points(root: dict) -> list[Point]:
        """Parse a curve document into points. Raises ValueError if malformed."""
        if not isinstance(root, dict):
            raise ValueError("keyframe must be an object")
        raw_points = root.get("Points", [])
        if not isinstance(raw_points, list):
            raise ValueError("'Points' must be a list")
        return [Point.from_json_value(p) for p in raw_points]
