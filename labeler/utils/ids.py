import hashlib
from typing import Iterable

# normalized coordinates are rounded to this many decimals before hashing
ID_PRECISION = 6


def sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def urn(namespace: str, *parts: str) -> str:
    base = "|".join(parts)
    return f"urn:lbl:{namespace}:{sha256_str(base)}"


def canonical_polygon(polygon: Iterable[float]) -> str:
    # "+ 0.0" folds -0.0 into 0.0 so both render identically
    return ",".join(f"{round(float(v), ID_PRECISION) + 0.0:.{ID_PRECISION}f}" for v in polygon)


def region_id(polygon: Iterable[float], page: int) -> str:
    """
    Content-addressed id of a region: a pure function of its normalized polygon
    (flat [x1, y1, x2, y2, ...] fractions of the page) and its page number.
    Two features with the same rounded polygon on the same page share an id.
    """
    return urn("region", canonical_polygon(polygon), str(int(page)))
