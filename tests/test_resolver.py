import unittest

from pdf_size_chooser.engine.models import EstimationCurve, SizeEstimate
from pdf_size_chooser.engine.resolver import choose_start_quality, resolve_quality

MB = 1_000_000


def _curve(points, original=None):
    estimates = tuple(
        SizeEstimate(quality=q, estimated_bytes=b, sample_compressed_bytes=b // 10, sample_page_count=2, total_page_count=10)
        for q, b in sorted(points)
    )
    return EstimationCurve(original_bytes=original or max(b for _, b in points), page_count=10, estimates=estimates)


BASE_CURVE = _curve([(25, 1 * MB), (50, 2 * MB), (75, 4 * MB), (100, 8 * MB)])


class TestResolveQuality(unittest.TestCase):
    def test_target_above_top_estimate_returns_top_quality(self):
        result = resolve_quality(BASE_CURVE, 10 * MB)
        self.assertEqual(result.quality, 100)
        self.assertTrue(result.achievable)
        self.assertEqual(result.estimated_bytes, 8 * MB)

    def test_target_equal_to_top_estimate_is_achievable(self):
        result = resolve_quality(BASE_CURVE, 8 * MB)
        self.assertEqual(result.quality, 100)
        self.assertTrue(result.achievable)

    def test_target_below_bottom_estimate_is_not_achievable(self):
        result = resolve_quality(BASE_CURVE, MB // 2)
        self.assertEqual(result.quality, 25)
        self.assertFalse(result.achievable)

    def test_interpolates_between_bracketing_pair(self):
        result = resolve_quality(BASE_CURVE, 3 * MB)
        self.assertEqual(result.quality, 63)
        self.assertTrue(result.achievable)
        self.assertGreater(result.quality, 50)
        self.assertLess(result.quality, 75)

    def test_target_on_lowest_estimate_is_achievable(self):
        result = resolve_quality(BASE_CURVE, 1 * MB)
        self.assertEqual(result.quality, 25)
        self.assertTrue(result.achievable)

    def test_flat_segment_returns_lower_quality(self):
        curve = _curve([(25, 1 * MB), (50, 3 * MB), (75, 3 * MB), (100, 8 * MB)])
        result = resolve_quality(curve, 3 * MB)
        self.assertEqual(result.quality, 50)
        self.assertTrue(result.achievable)

    def test_large_document_scenario_lands_between_50_and_75(self):
        curve = _curve([(25, 5 * MB), (50, 12 * MB), (75, 28 * MB), (100, 45 * MB)])
        result = resolve_quality(curve, 25 * MB)
        self.assertTrue(50 < result.quality < 75)
        self.assertTrue(result.achievable)

    def test_single_level_curve(self):
        curve = _curve([(60, 4 * MB)])
        self.assertEqual(resolve_quality(curve, 5 * MB).quality, 60)
        low = resolve_quality(curve, 3 * MB)
        self.assertEqual(low.quality, 60)
        self.assertFalse(low.achievable)

    def test_empty_curve_raises(self):
        empty = EstimationCurve(original_bytes=10, page_count=1, estimates=())
        with self.assertRaises(ValueError):
            resolve_quality(empty, 5)

    def test_resolution_is_pure(self):
        first = resolve_quality(BASE_CURVE, 3 * MB)
        second = resolve_quality(BASE_CURVE, 3 * MB)
        self.assertEqual(first, second)


class TestChooseStartQuality(unittest.TestCase):
    def test_requested_quality_caps_target_resolution(self):
        result = choose_start_quality(BASE_CURVE, 10 * MB, 40, default_quality=75)
        self.assertEqual(result.quality, 40)
        self.assertTrue(result.achievable)

    def test_target_without_curve_uses_default_quality(self):
        result = choose_start_quality(None, 3 * MB, None, default_quality=75)
        self.assertEqual(result.quality, 75)

    def test_quality_only_request_estimates_from_curve(self):
        result = choose_start_quality(BASE_CURVE, None, 50, default_quality=75)
        self.assertEqual(result.quality, 50)
        self.assertEqual(result.estimated_bytes, 2 * MB)
