import math
from typing import Iterable, List, Sequence, Tuple

Point = Tuple[float, float]
Extent = Tuple[float, float, float, float]  # minx, miny, maxx, maxy


def flatten(points: Iterable[Sequence[float]]) -> List[float]:
    flat: List[float] = []
    for p in points:
        flat.extend((float(p[0]), float(p[1])))
    return flat


def unflatten(flat: Sequence[float]) -> List[Point]:
    return [(float(flat[i]), float(flat[i + 1])) for i in range(0, len(flat) - 1, 2)]


def extent(points: Iterable[Sequence[float]]) -> Extent:
    pts = list(points)
    if not pts:
        raise ValueError("extent() of an empty point list")
    xs = [p[0] for p in pts]
    ys = [p[1] for p in pts]
    return (min(xs), min(ys), max(xs), max(ys))


def extent_from_corners(a: Point, b: Point) -> Extent:
    return (min(a[0], b[0]), min(a[1], b[1]), max(a[0], b[0]), max(a[1], b[1]))


def rectangle_from_extent(ext: Extent) -> List[Point]:
    """Axis-aligned box, clockwise from the top-left corner (y grows downwards)."""
    minx, miny, maxx, maxy = ext
    return [(minx, miny), (maxx, miny), (maxx, maxy), (minx, maxy)]


def extent_area(ext: Extent) -> float:
    return max(0.0, ext[2] - ext[0]) * max(0.0, ext[3] - ext[1])


def extents_intersect(a: Extent, b: Extent) -> bool:
    return a[0] <= b[2] and a[2] >= b[0] and a[1] <= b[3] and a[3] >= b[1]


def buffer_extent(ext: Extent, amount: float) -> Extent:
    return (ext[0] - amount, ext[1] - amount, ext[2] + amount, ext[3] + amount)


def distance(a: Point, b: Point) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def point_in_polygon(pt: Point, polygon: Sequence[Point]) -> bool:
    # ray casting; points on an edge may land either side
    x, y = pt
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def distance_to_segment(pt: Point, a: Point, b: Point) -> float:
    dx, dy = b[0] - a[0], b[1] - a[1]
    if dx == 0 and dy == 0:
        return distance(pt, a)
    t = ((pt[0] - a[0]) * dx + (pt[1] - a[1]) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    return distance(pt, (a[0] + t * dx, a[1] + t * dy))


def polygon_contains(polygon: Sequence[Point], pt: Point, tolerance: float = 0.0) -> bool:
    if len(polygon) < 3:
        return False
    if point_in_polygon(pt, polygon):
        return True
    if tolerance <= 0:
        return False
    n = len(polygon)
    return any(distance_to_segment(pt, polygon[i], polygon[(i + 1) % n]) <= tolerance for i in range(n))


def rotate(pt: Point, angle_deg: float, center: Point = (0.0, 0.0)) -> Point:
    rad = math.radians(angle_deg)
    cos_a, sin_a = math.cos(rad), math.sin(rad)
    dx, dy = pt[0] - center[0], pt[1] - center[1]
    return (center[0] + dx * cos_a - dy * sin_a, center[1] + dx * sin_a + dy * cos_a)
