from __future__ import annotations

import math
from typing import Iterable, Sequence, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]


def vec3(values: Sequence[float]) -> Vec3:
    if len(values) < 3:
        raise ValueError("A position needs three components.")
    return float(values[0]), float(values[1]), float(values[2])


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    return math.sqrt(
        (float(a[0]) - float(b[0])) ** 2
        + (float(a[1]) - float(b[1])) ** 2
        + (float(a[2]) - float(b[2])) ** 2
    )


def path_length(points: Sequence[Sequence[float]]) -> float:
    total = 0.0
    for i in range(len(points) - 1):
        total += distance(points[i], points[i + 1])
    return total


def all_finite(values: Iterable[float]) -> bool:
    return all(math.isfinite(float(v)) for v in values)


def distance_to_segment(
    position: Sequence[float],
    segment_start: Sequence[float],
    segment_end: Sequence[float],
) -> float:
    """Distance from ``position`` to the closest point of a 3-D segment.

    The projection parameter is clamped to [0, 1]; a zero-length segment
    degenerates to the distance to its start point.
    """
    p = np.asarray(position, dtype=np.float64)
    a = np.asarray(segment_start, dtype=np.float64)
    b = np.asarray(segment_end, dtype=np.float64)

    seg = b - a
    length_sq = float(np.dot(seg, seg))
    if length_sq <= 0.0:
        return float(np.linalg.norm(p - a))

    t = clip(float(np.dot(p - a, seg)) / length_sq, 0.0, 1.0)
    projection = a + t * seg
    return float(np.linalg.norm(p - projection))


def horizontal_bearing_rad(origin: Sequence[float], target: Sequence[float]) -> float:
    # Zero points along -Z, increasing clockwise when viewed from above.
    dx = float(target[0]) - float(origin[0])
    dz = float(target[2]) - float(origin[2])
    return math.atan2(dx, -dz)


def wrap_degrees(angle_deg: float) -> float:
    """Normalise an angle into (-180, 180]."""
    wrapped = math.fmod(float(angle_deg), 360.0)
    if wrapped > 180.0:
        wrapped -= 360.0
    elif wrapped <= -180.0:
        wrapped += 360.0
    return wrapped


def quaternion_to_yaw(qx: float, qy: float, qz: float, qw: float) -> float:
    # Third column of the rotation matrix; camera forward is -Z.
    r02 = 2.0 * ((qx * qz) + (qy * qw))
    r22 = 1.0 - (2.0 * ((qx * qx) + (qy * qy)))
    return math.atan2(r02, r22)


def clip(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(value)))
