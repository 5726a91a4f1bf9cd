"""
POOL MATERIAL VISUALIZER - Mask Geometry

Masks are ordered point lists in image-pixel space: 'area' masks are closed
polygons, 'linear' masks are open polylines. Edges, bounds, area, length
and the even-odd rasterization used by the compositing pipeline.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

MASK_AREA = 'area'
MASK_LINEAR = 'linear'
MASK_TYPES = (MASK_AREA, MASK_LINEAR)


class Point(NamedTuple):
    x: float
    y: float


class Edge(NamedTuple):
    edge_index: int
    start_point: Point
    end_point: Point
    pixel_length: float


@dataclass
class Mask:
    """A user-drawn region. custom_calibration is a calibration.CustomCalibration."""
    id: str
    points: List[Point] = field(default_factory=list)
    type: str = MASK_AREA
    material_id: Optional[str] = None
    custom_calibration: Optional[Any] = None

    def __post_init__(self):
        if self.type not in MASK_TYPES:
            raise ValueError(f"Unknown mask type: {self.type}. Valid types: {list(MASK_TYPES)}")
        self.points = [Point(float(p[0]), float(p[1])) for p in self.points]

    @property
    def is_closed(self) -> bool:
        return self.type == MASK_AREA

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'points': [{'x': p.x, 'y': p.y} for p in self.points],
            'type': self.type,
        }
        if self.material_id is not None:
            data['materialId'] = self.material_id
        if self.custom_calibration is not None:
            data['customCalibration'] = self.custom_calibration.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Mask':
        from calibration import CustomCalibration

        points = [_coerce_point(p) for p in data.get('points', [])]
        calibration = data.get('customCalibration')
        return cls(
            id=str(data['id']),
            points=points,
            type=data.get('type', MASK_AREA),
            material_id=data.get('materialId'),
            custom_calibration=CustomCalibration.from_dict(calibration) if calibration else None,
        )


def _coerce_point(p) -> Point:
    if isinstance(p, dict):
        return Point(float(p['x']), float(p['y']))
    return Point(float(p[0]), float(p[1]))


def distance(p1: Sequence[float], p2: Sequence[float]) -> float:
    return math.hypot(p2[0] - p1[0], p2[1] - p1[1])


def extract_edges(points: Sequence[Sequence[float]], is_closed: bool = True) -> List[Edge]:
    """One edge per consecutive point pair, wrapping last->first when closed."""
    n = len(points)
    if n < 2:
        return []

    edges = []
    for i in range(n):
        nxt = (i + 1) % n if is_closed else i + 1
        if nxt >= n:
            break
        start = Point(*points[i][:2])
        end = Point(*points[nxt][:2])
        edges.append(Edge(i, start, end, distance(start, end)))
    return edges


def mask_edges(mask: Mask) -> List[Edge]:
    """Edges of a mask; degenerate masks (area < 3 points, linear < 2) have none."""
    minimum = 3 if mask.is_closed else 2
    if len(mask.points) < minimum:
        return []
    return extract_edges(mask.points, mask.is_closed)


def polygon_area(points: Sequence[Sequence[float]]) -> float:
    """Shoelace area in square pixels; 0 for fewer than 3 points."""
    n = len(points)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        j = (i + 1) % n
        area += points[i][0] * points[j][1]
        area -= points[j][0] * points[i][1]
    return abs(area) / 2


def polyline_length(points: Sequence[Sequence[float]], closed: bool = False) -> float:
    """Total pixel length along the points (perimeter when closed)."""
    return sum(edge.pixel_length for edge in extract_edges(points, closed))


def mask_bounds(points: Sequence[Sequence[float]]) -> Tuple[float, float, float, float]:
    """Axis-aligned bounds as (min_x, min_y, max_x, max_y); zeros when empty."""
    if not points:
        return 0.0, 0.0, 0.0, 0.0
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return min(xs), min(ys), max(xs), max(ys)


def point_in_polygon(x: float, y: float, polygon: Sequence[Sequence[float]]) -> bool:
    """Even-odd ray casting test."""
    if len(polygon) < 3:
        return False
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def rasterize_mask(points: Sequence[Sequence[float]], width: int, height: int,
                   origin: Tuple[float, float] = (0.0, 0.0)) -> np.ndarray:
    """Binary coverage of a polygon over a width x height raster.

    Pixel (col, row) is sampled at image coordinate (origin_x + col,
    origin_y + row) with the even-odd rule, exactly as point_in_polygon.

    Returns:
        uint8 array (height, width), 255 inside and 0 outside
    """
    mask = np.zeros((height, width), dtype=bool)
    if len(points) < 3 or width <= 0 or height <= 0:
        return mask.astype(np.uint8)

    ox, oy = origin
    xs = np.arange(width, dtype=np.float64) + ox
    ys = np.arange(height, dtype=np.float64) + oy

    n = len(points)
    j = n - 1
    for i in range(n):
        xi, yi = float(points[i][0]), float(points[i][1])
        xj, yj = float(points[j][0]), float(points[j][1])
        j = i
        if yi == yj:
            continue  # horizontal edges never straddle a scanline
        rows = (yi > ys) != (yj > ys)
        if not rows.any():
            continue
        x_cross = (xj - xi) * (ys[rows] - yi) / (yj - yi) + xi
        mask[rows] ^= xs[None, :] < x_cross[:, None]

    return mask.astype(np.uint8) * 255


# =============================================================================
# VERTEX EDITING
# =============================================================================

def _invalidate_edges(mask: Mask) -> Optional[Any]:
    from calibration import drop_edge_measurements
    return drop_edge_measurements(mask.custom_calibration)


def insert_vertex(mask: Mask, edge_index: int, point: Sequence[float]) -> Mask:
    """Split edge `edge_index` by inserting a vertex after its start point.

    Edge numbering shifts, so per-edge measurements are dropped.
    """
    edges = extract_edges(mask.points, mask.is_closed)
    if not 0 <= edge_index < len(edges):
        raise IndexError(f"Edge {edge_index} does not exist on mask {mask.id}")
    points = list(mask.points)
    points.insert(edge_index + 1, Point(float(point[0]), float(point[1])))
    return replace(mask, points=points, custom_calibration=_invalidate_edges(mask))


def delete_vertex(mask: Mask, vertex_index: int) -> Mask:
    """Remove a vertex. Edge numbering shifts, so per-edge measurements are dropped."""
    if not 0 <= vertex_index < len(mask.points):
        raise IndexError(f"Vertex {vertex_index} does not exist on mask {mask.id}")
    points = list(mask.points)
    del points[vertex_index]
    return replace(mask, points=points, custom_calibration=_invalidate_edges(mask))


def move_vertex(mask: Mask, vertex_index: int, point: Sequence[float]) -> Mask:
    """Move a vertex. Topology is unchanged so measurements are kept
    (see calibration.refresh_measurements to re-derive pixel lengths)."""
    if not 0 <= vertex_index < len(mask.points):
        raise IndexError(f"Vertex {vertex_index} does not exist on mask {mask.id}")
    points = list(mask.points)
    points[vertex_index] = Point(float(point[0]), float(point[1]))
    return replace(mask, points=points)
