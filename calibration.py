"""
POOL MATERIAL VISUALIZER - Edge Calibration

Converts a mask's pixel geometry into real-world measurements.

Four ways to calibrate a mask:
- estimated:    user-typed overall length/width (confidence medium)
- reference:    length/width taken from a reference object (confidence high)
- auto:         bounding box at an assumed pixel density (confidence low)
- manual_edges: a real-world length per edge; the only perspective-tolerant
                method and the one used for weighted area/length
"""

import logging
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from geometry import Edge, Mask, extract_edges, mask_bounds, mask_edges, polygon_area

logger = logging.getLogger(__name__)

# Plausibility bounds for a single edge (metres)
MIN_PLAUSIBLE_LENGTH = 0.1
MAX_PLAUSIBLE_LENGTH = 100.0

# Opposite edges of a roughly rectangular mask may differ by this much (percent)
OPPOSITE_EDGE_TOLERANCE = 20.0

# Assumed density for auto estimates, and the floor applied to each dimension
AUTO_PIXELS_PER_METER = 100.0
AUTO_MIN_METERS = 1.0


class CalibrationError(ValueError):
    """Raised when a calibration call refers to geometry that does not exist."""


class CalibrationMethod(str, Enum):
    REFERENCE = 'reference'
    ESTIMATED = 'estimated'
    AUTO = 'auto'
    MANUAL_EDGES = 'manual_edges'


class Confidence(str, Enum):
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


DEFAULT_CONFIDENCE = {
    CalibrationMethod.REFERENCE: Confidence.HIGH,
    CalibrationMethod.ESTIMATED: Confidence.MEDIUM,
    CalibrationMethod.AUTO: Confidence.LOW,
    CalibrationMethod.MANUAL_EDGES: Confidence.MEDIUM,
}


@dataclass(frozen=True)
class EdgeMeasurement:
    edge_index: int
    pixel_length: float
    real_world_length: float
    pixels_per_meter: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'edgeIndex': self.edge_index,
            'pixelLength': self.pixel_length,
            'realWorldLength': self.real_world_length,
            'pixelsPerMeter': self.pixels_per_meter,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EdgeMeasurement':
        return cls(
            edge_index=int(data['edgeIndex']),
            pixel_length=float(data['pixelLength']),
            real_world_length=float(data['realWorldLength']),
            pixels_per_meter=float(data['pixelsPerMeter']),
        )


@dataclass
class CustomCalibration:
    """The one calibration record a mask carries. Replaced wholesale on save."""
    calibration_method: CalibrationMethod
    confidence: Confidence
    estimated_length: Optional[float] = None
    estimated_width: Optional[float] = None
    edge_measurements: Optional[List[EdgeMeasurement]] = None
    last_updated: float = field(default_factory=lambda: time.time() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'calibrationMethod': self.calibration_method.value,
            'confidence': self.confidence.value,
            'lastUpdated': self.last_updated,
        }
        if self.estimated_length is not None:
            data['estimatedLength'] = self.estimated_length
        if self.estimated_width is not None:
            data['estimatedWidth'] = self.estimated_width
        if self.edge_measurements is not None:
            data['edgeMeasurements'] = [m.to_dict() for m in self.edge_measurements]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CustomCalibration':
        measurements = data.get('edgeMeasurements')
        return cls(
            calibration_method=CalibrationMethod(data['calibrationMethod']),
            confidence=Confidence(data.get('confidence', Confidence.MEDIUM.value)),
            estimated_length=data.get('estimatedLength'),
            estimated_width=data.get('estimatedWidth'),
            edge_measurements=[EdgeMeasurement.from_dict(m) for m in measurements]
            if measurements is not None else None,
            last_updated=data.get('lastUpdated', time.time() * 1000),
        )


class ValidationResult(NamedTuple):
    is_valid: bool
    warnings: List[str]


def parse_length(value) -> Optional[float]:
    """Parse user input as a positive finite length, or None."""
    try:
        length = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(length) or length <= 0:
        return None
    return length


def measure_edge(edges: Sequence[Edge], edge_index: int, real_world_length) -> Optional[EdgeMeasurement]:
    """Build a measurement for one edge from user input.

    Returns None when the length is not a positive number (the caller drops
    any previous measurement for that edge). Raises CalibrationError if the
    edge does not exist.
    """
    edge = next((e for e in edges if e.edge_index == edge_index), None)
    if edge is None:
        raise CalibrationError(f"Edge {edge_index} does not exist")

    length = parse_length(real_world_length)
    if length is None:
        return None

    return EdgeMeasurement(
        edge_index=edge_index,
        pixel_length=edge.pixel_length,
        real_world_length=length,
        pixels_per_meter=edge.pixel_length / length,
    )


def weighted_pixels_per_meter(measurements: Sequence[EdgeMeasurement]) -> float:
    """Average pixels-per-metre weighted by each edge's real-world length.

    Longer edges carry proportionally less relative measuring error, so they
    dominate. Returns 0 for no measurements.
    """
    total_weight = 0.0
    weighted_sum = 0.0
    for m in measurements:
        weight = m.real_world_length
        weighted_sum += m.pixels_per_meter * weight
        total_weight += weight
    return weighted_sum / total_weight if total_weight > 0 else 0.0


def validate_edge_measurements(edges: Sequence[Edge],
                               measurements: Sequence[EdgeMeasurement]) -> ValidationResult:
    """Advisory consistency checks. Warnings never block saving."""
    if not measurements:
        return ValidationResult(False, ['No measurements provided'])

    warnings = []

    for m in measurements:
        if not math.isfinite(m.real_world_length) or m.real_world_length <= 0:
            warnings.append(f"Edge {m.edge_index + 1} has an invalid length ({m.real_world_length}).")

    # Opposite sides of a roughly rectangular mask should agree
    if len(edges) >= 4 and len(measurements) >= 2:
        by_index = {m.edge_index: m for m in measurements}
        for idx1, idx2 in ((0, 2), (1, 3)):
            m1 = by_index.get(idx1)
            m2 = by_index.get(idx2)
            if m1 is None or m2 is None:
                continue
            avg = (m1.real_world_length + m2.real_world_length) / 2
            if avg <= 0:
                continue
            diff_percent = abs(m1.real_world_length - m2.real_world_length) / avg * 100
            if diff_percent > OPPOSITE_EDGE_TOLERANCE:
                warnings.append(
                    f"Edges {idx1 + 1} and {idx2 + 1} have significantly different lengths "
                    f"({diff_percent:.1f}% difference). "
                    f"This may indicate perspective distortion or measurement error."
                )

    for m in measurements:
        if 0 < m.real_world_length < MIN_PLAUSIBLE_LENGTH:
            warnings.append(
                f"Edge {m.edge_index + 1} has a very small length ({m.real_world_length}m). Please verify."
            )
        if m.real_world_length > MAX_PLAUSIBLE_LENGTH:
            warnings.append(
                f"Edge {m.edge_index + 1} has a very large length ({m.real_world_length}m). Please verify."
            )

    return ValidationResult(not warnings, warnings)


def calibrated_area(points, measurements: Sequence[EdgeMeasurement]) -> float:
    """Polygon area in square metres using the weighted pixels-per-metre."""
    if len(points) < 3 or not measurements:
        return 0.0
    ppm = weighted_pixels_per_meter(measurements)
    if ppm <= 0:
        return 0.0
    return polygon_area(points) / (ppm * ppm)


def calibrated_length(points, measurements: Sequence[EdgeMeasurement], closed: bool = False) -> float:
    """Path length in metres (perimeter when closed) using the weighted pixels-per-metre."""
    if len(points) < 2 or not measurements:
        return 0.0
    ppm = weighted_pixels_per_meter(measurements)
    if ppm <= 0:
        return 0.0
    pixels = sum(e.pixel_length for e in extract_edges(points, closed))
    return pixels / ppm


# =============================================================================
# CALIBRATION METHODS
# =============================================================================

def validate_dimensions(length, width) -> ValidationResult:
    """Check a length/width pair typed by the user."""
    warnings = []
    if parse_length(length) is None:
        warnings.append('Please enter a valid length')
    if parse_length(width) is None:
        warnings.append('Please enter a valid width')
    return ValidationResult(not warnings, warnings)


def estimate_calibration(length, width,
                         method: CalibrationMethod = CalibrationMethod.ESTIMATED) -> Optional[CustomCalibration]:
    """Aggregate calibration from an overall length and width.

    Returns None when either dimension is not a positive number.
    """
    method = CalibrationMethod(method)
    if method == CalibrationMethod.MANUAL_EDGES:
        raise CalibrationError("Use manual_edge_calibration for per-edge calibration")
    if not validate_dimensions(length, width).is_valid:
        return None
    return CustomCalibration(
        calibration_method=method,
        confidence=DEFAULT_CONFIDENCE[method],
        estimated_length=parse_length(length),
        estimated_width=parse_length(width),
    )


def auto_estimate(points) -> Optional[CustomCalibration]:
    """Rough length/width from the bounding box at AUTO_PIXELS_PER_METER.

    Not a true calibration; confidence is always low. None for < 3 points.
    """
    if len(points) < 3:
        return None
    min_x, min_y, max_x, max_y = mask_bounds(points)
    width = max(AUTO_MIN_METERS, (max_x - min_x) / AUTO_PIXELS_PER_METER)
    length = max(AUTO_MIN_METERS, (max_y - min_y) / AUTO_PIXELS_PER_METER)
    return CustomCalibration(
        calibration_method=CalibrationMethod.AUTO,
        confidence=Confidence.LOW,
        estimated_length=round(length, 1),
        estimated_width=round(width, 1),
    )


def manual_edge_calibration(measurements: Sequence[EdgeMeasurement],
                            confidence: Confidence = Confidence.MEDIUM) -> Optional[CustomCalibration]:
    """Per-edge calibration record. None when there is nothing to save."""
    if not measurements:
        return None
    edges = [EdgeMeasurement(m.edge_index, m.pixel_length, m.real_world_length, m.pixels_per_meter)
             for m in measurements]
    return CustomCalibration(
        calibration_method=CalibrationMethod.MANUAL_EDGES,
        confidence=Confidence(confidence),
        edge_measurements=sorted(edges, key=lambda m: m.edge_index),
    )


def save_edge_calibration(mask: Mask, measurements: Sequence[EdgeMeasurement],
                          confidence: Confidence = Confidence.MEDIUM) -> Mask:
    """Replace the mask's calibration with a per-edge one.

    Validation warnings are logged but do not prevent saving.
    """
    result = validate_edge_measurements(mask_edges(mask), measurements)
    if not result.is_valid:
        logger.warning("Saving edge calibration for mask %s with warnings: %s",
                       mask.id, result.warnings)
    return replace(mask, custom_calibration=manual_edge_calibration(measurements, confidence))


def fill_from_global(edges: Sequence[Edge], pixels_per_meter: float) -> List[EdgeMeasurement]:
    """Seed every edge from a photo-wide pixels-per-metre."""
    if pixels_per_meter <= 0:
        return []
    return [
        EdgeMeasurement(
            edge_index=e.edge_index,
            pixel_length=e.pixel_length,
            real_world_length=e.pixel_length / pixels_per_meter,
            pixels_per_meter=pixels_per_meter,
        )
        for e in edges
        if e.pixel_length > 0
    ]


def drop_edge_measurements(calibration: Optional[CustomCalibration]) -> Optional[CustomCalibration]:
    """Calibration to keep after a topology change (vertex insert/delete).

    A per-edge calibration becomes uncalibrated; aggregate calibrations
    survive without edge data.
    """
    if calibration is None:
        return None
    if calibration.calibration_method == CalibrationMethod.MANUAL_EDGES:
        logger.info("Edge calibration invalidated by topology change")
        return None
    if calibration.edge_measurements:
        return replace(calibration, edge_measurements=None)
    return calibration


def refresh_measurements(mask: Mask) -> Mask:
    """Re-derive pixel lengths after vertices moved; drop measurements for missing edges."""
    calibration = mask.custom_calibration
    if calibration is None or not calibration.edge_measurements:
        return mask

    edges = {e.edge_index: e for e in mask_edges(mask)}
    refreshed = []
    for m in calibration.edge_measurements:
        edge = edges.get(m.edge_index)
        if edge is None or edge.pixel_length <= 0:
            logger.debug("Dropping stale measurement for edge %s on mask %s", m.edge_index, mask.id)
            continue
        refreshed.append(EdgeMeasurement(m.edge_index, edge.pixel_length, m.real_world_length,
                                         edge.pixel_length / m.real_world_length))

    if not refreshed:
        return replace(mask, custom_calibration=drop_edge_measurements(calibration))
    return replace(mask, custom_calibration=replace(calibration, edge_measurements=refreshed))


# =============================================================================
# MASK MEASUREMENTS
# =============================================================================

def mask_pixels_per_meter(mask: Mask, fallback: float = 0.0) -> float:
    """Best available pixels-per-metre for a mask.

    Per-edge calibration uses the weighted average; aggregate calibrations
    compare the bounding box to the estimated length (height) and width;
    otherwise the photo-wide fallback is returned.
    """
    calibration = mask.custom_calibration
    if calibration is None:
        return fallback

    if calibration.edge_measurements:
        ppm = weighted_pixels_per_meter(calibration.edge_measurements)
        if ppm > 0:
            return ppm

    min_x, min_y, max_x, max_y = mask_bounds(mask.points)
    ratios = []
    if calibration.estimated_length and max_y > min_y:
        ratios.append((max_y - min_y) / calibration.estimated_length)
    if calibration.estimated_width and max_x > min_x:
        ratios.append((max_x - min_x) / calibration.estimated_width)
    if ratios:
        return sum(ratios) / len(ratios)
    return fallback


def measure_mask(mask: Mask, fallback_pixels_per_meter: float = 0.0) -> Dict[str, Any]:
    """Summary used by the measurement overlay.

    Returns:
        Dict with pixels_per_meter, area_m2 (area masks), length_m,
        method and confidence (None when uncalibrated)
    """
    calibration = mask.custom_calibration
    ppm = mask_pixels_per_meter(mask, fallback_pixels_per_meter)
    edges = mask_edges(mask)
    pixel_length = sum(e.pixel_length for e in edges)

    if calibration is not None and calibration.edge_measurements:
        area = calibrated_area(mask.points, calibration.edge_measurements) if mask.is_closed else 0.0
        length = calibrated_length(mask.points, calibration.edge_measurements, mask.is_closed) if edges else 0.0
    elif ppm > 0:
        area = polygon_area(mask.points) / (ppm * ppm) if mask.is_closed else 0.0
        length = pixel_length / ppm
    else:
        area = 0.0
        length = 0.0

    return {
        'pixels_per_meter': ppm,
        'area_m2': area,
        'length_m': length,
        'method': calibration.calibration_method.value if calibration else None,
        'confidence': calibration.confidence.value if calibration else None,
    }
