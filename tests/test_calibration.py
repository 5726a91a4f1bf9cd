"""
Tests for edge calibration
"""

import pytest

import calibration
import geometry
from calibration import (
    CalibrationError,
    CalibrationMethod,
    Confidence,
    CustomCalibration,
    EdgeMeasurement,
)
from geometry import Mask

SQUARE_10 = [(0, 0), (10, 0), (10, 10), (0, 10)]
SQUARE_100 = [(0, 0), (100, 0), (100, 100), (0, 100)]


def measurement(edge_index, pixel_length, real_world_length):
    return EdgeMeasurement(edge_index, pixel_length, real_world_length, pixel_length / real_world_length)


class TestParseLength:
    @pytest.mark.parametrize("value,expected", [
        ("3.5", 3.5),
        (2, 2.0),
        ("-1", None),
        (0, None),
        ("nan", None),
        ("inf", None),
        ("abc", None),
        (None, None),
    ])
    def test_parse(self, value, expected):
        assert calibration.parse_length(value) == expected


class TestMeasureEdge:
    def test_pixels_per_meter(self):
        edges = geometry.extract_edges(SQUARE_10)
        m = calibration.measure_edge(edges, 1, "2")
        assert m == EdgeMeasurement(1, 10.0, 2.0, 5.0)

    def test_invalid_length_gives_none(self):
        edges = geometry.extract_edges(SQUARE_10)
        assert calibration.measure_edge(edges, 0, "-3") is None

    def test_missing_edge_raises(self):
        edges = geometry.extract_edges(SQUARE_10)
        with pytest.raises(CalibrationError):
            calibration.measure_edge(edges, 7, 2)


class TestWeightedPixelsPerMeter:
    def test_weighted_by_real_length(self):
        ms = [measurement(0, 100, 5), measurement(1, 50, 1)]
        assert calibration.weighted_pixels_per_meter(ms) == pytest.approx((20 * 5 + 50 * 1) / 6)
        assert calibration.weighted_pixels_per_meter(ms) == pytest.approx(20.83, abs=0.01)

    def test_empty_is_zero(self):
        assert calibration.weighted_pixels_per_meter([]) == 0.0


class TestCalibratedMeasures:
    def test_area_of_100px_square(self):
        assert calibration.calibrated_area(SQUARE_100, [measurement(0, 100, 10)]) == pytest.approx(100)

    def test_area_degenerate(self):
        assert calibration.calibrated_area(SQUARE_100[:2], [measurement(0, 100, 10)]) == 0.0
        assert calibration.calibrated_area(SQUARE_100, []) == 0.0

    def test_length(self):
        ms = [measurement(0, 100, 10)]
        assert calibration.calibrated_length(SQUARE_100, ms) == pytest.approx(30)
        assert calibration.calibrated_length(SQUARE_100, ms, closed=True) == pytest.approx(40)


class TestValidation:
    def test_no_measurements(self):
        result = calibration.validate_edge_measurements([], [])
        assert result.is_valid is False
        assert result.warnings == ['No measurements provided']

    def test_opposite_edges_mismatch_warns(self):
        edges = geometry.extract_edges(SQUARE_100)
        result = calibration.validate_edge_measurements(
            edges, [measurement(0, 100, 5), measurement(2, 100, 7)])
        assert result.is_valid is False
        assert len(result.warnings) == 1
        assert 'Edges 1 and 3' in result.warnings[0]

    def test_small_difference_is_fine(self):
        edges = geometry.extract_edges(SQUARE_100)
        result = calibration.validate_edge_measurements(
            edges, [measurement(0, 100, 5), measurement(2, 100, 5.5)])
        assert result.is_valid is True
        assert result.warnings == []

    def test_implausible_lengths_warn(self):
        edges = geometry.extract_edges(SQUARE_100)
        result = calibration.validate_edge_measurements(
            edges, [measurement(1, 100, 0.05), measurement(3, 100, 150)])
        assert len(result.warnings) == 3
        assert any('very small' in w for w in result.warnings)
        assert any('very large' in w for w in result.warnings)

    def test_triangle_skips_opposite_check(self):
        edges = geometry.extract_edges([(0, 0), (10, 0), (0, 10)])
        result = calibration.validate_edge_measurements(
            edges, [measurement(0, 10, 1), measurement(2, 14, 9)])
        assert result.is_valid is True


class TestCalibrationMethods:
    def test_estimated(self):
        cal = calibration.estimate_calibration(10, "5")
        assert cal.calibration_method == CalibrationMethod.ESTIMATED
        assert cal.confidence == Confidence.MEDIUM
        assert (cal.estimated_length, cal.estimated_width) == (10.0, 5.0)

    def test_reference_is_high_confidence(self):
        cal = calibration.estimate_calibration(10, 5, 'reference')
        assert cal.confidence == Confidence.HIGH

    def test_invalid_dimensions(self):
        assert calibration.estimate_calibration(-1, 5) is None
        result = calibration.validate_dimensions("x", 5)
        assert result.warnings == ['Please enter a valid length']

    def test_estimate_rejects_manual_edges(self):
        with pytest.raises(CalibrationError):
            calibration.estimate_calibration(1, 1, CalibrationMethod.MANUAL_EDGES)

    def test_auto_estimate(self):
        cal = calibration.auto_estimate([(0, 0), (500, 0), (500, 300), (0, 300)])
        assert cal.calibration_method == CalibrationMethod.AUTO
        assert cal.confidence == Confidence.LOW
        assert cal.estimated_width == 5.0
        assert cal.estimated_length == 3.0

    def test_auto_estimate_minimum_and_degenerate(self):
        cal = calibration.auto_estimate(SQUARE_10)
        assert (cal.estimated_length, cal.estimated_width) == (1.0, 1.0)
        assert calibration.auto_estimate(SQUARE_10[:2]) is None

    def test_manual_edge_calibration(self):
        cal = calibration.manual_edge_calibration([measurement(2, 100, 5), measurement(0, 100, 5)])
        assert cal.calibration_method == CalibrationMethod.MANUAL_EDGES
        assert [m.edge_index for m in cal.edge_measurements] == [0, 2]
        assert calibration.manual_edge_calibration([]) is None

    def test_save_replaces_wholesale(self):
        estimated = calibration.estimate_calibration(10, 5)
        mask = Mask('m', SQUARE_100, custom_calibration=estimated)
        saved = calibration.save_edge_calibration(mask, [measurement(0, 100, 10)])
        assert saved.custom_calibration.estimated_length is None
        assert saved.custom_calibration.calibration_method == CalibrationMethod.MANUAL_EDGES

    def test_fill_from_global(self):
        edges = geometry.extract_edges(SQUARE_10)
        filled = calibration.fill_from_global(edges, 5)
        assert len(filled) == 4
        assert all(m.real_world_length == pytest.approx(2.0) for m in filled)
        assert calibration.fill_from_global(edges, 0) == []


class TestTopologyChanges:
    def test_drop_manual_calibration(self):
        cal = calibration.manual_edge_calibration([measurement(0, 10, 2)])
        assert calibration.drop_edge_measurements(cal) is None
        assert calibration.drop_edge_measurements(None) is None

    def test_drop_keeps_aggregate(self):
        cal = CustomCalibration(CalibrationMethod.REFERENCE, Confidence.HIGH,
                                estimated_length=4, edge_measurements=[measurement(0, 10, 2)])
        dropped = calibration.drop_edge_measurements(cal)
        assert dropped.edge_measurements is None
        assert dropped.estimated_length == 4

    def test_refresh_after_move(self):
        cal = calibration.manual_edge_calibration([measurement(0, 10, 2)])
        mask = geometry.move_vertex(Mask('m', SQUARE_10, custom_calibration=cal), 1, (20, 0))
        refreshed = calibration.refresh_measurements(mask)
        m = refreshed.custom_calibration.edge_measurements[0]
        assert m.pixel_length == pytest.approx(20)
        assert m.pixels_per_meter == pytest.approx(10)

    def test_refresh_drops_missing_edges(self):
        cal = calibration.manual_edge_calibration([measurement(3, 10, 2)])
        mask = Mask('m', [(0, 0), (10, 0), (0, 10)], custom_calibration=cal)
        assert calibration.refresh_measurements(mask).custom_calibration is None


class TestMaskMeasurements:
    def test_manual_edges(self):
        cal = calibration.manual_edge_calibration([measurement(0, 100, 10)])
        summary = calibration.measure_mask(Mask('m', SQUARE_100, custom_calibration=cal))
        assert summary['pixels_per_meter'] == pytest.approx(10)
        assert summary['area_m2'] == pytest.approx(100)
        assert summary['length_m'] == pytest.approx(40)
        assert summary['method'] == 'manual_edges'

    def test_estimated_uses_bounding_box(self):
        cal = calibration.estimate_calibration(5, 10)
        mask = Mask('m', SQUARE_100, custom_calibration=cal)
        assert calibration.mask_pixels_per_meter(mask) == pytest.approx(15)

    def test_uncalibrated_uses_fallback(self):
        mask = Mask('m', SQUARE_100)
        assert calibration.mask_pixels_per_meter(mask, 20) == 20
        summary = calibration.measure_mask(mask, 20)
        assert summary['area_m2'] == pytest.approx(25)
        assert summary['method'] is None

    def test_uncalibrated_without_fallback_is_zero(self):
        summary = calibration.measure_mask(Mask('m', SQUARE_100))
        assert summary['area_m2'] == 0.0
        assert summary['length_m'] == 0.0

    def test_linear_mask_has_no_area(self):
        cal = calibration.manual_edge_calibration([measurement(0, 100, 10)])
        mask = Mask('rope', [(0, 0), (100, 0), (100, 50)], type='linear', custom_calibration=cal)
        summary = calibration.measure_mask(mask)
        assert summary['area_m2'] == 0.0
        assert summary['length_m'] == pytest.approx(15)
