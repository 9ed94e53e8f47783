import os
import sys
import datetime
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms import MathTools, CardioEstimator


class MathToolsTestCase(unittest.TestCase):
    def test_clamp(self) -> None:
        self.assertEqual(MathTools.clamp(5, 0, 10), 5)
        self.assertEqual(MathTools.clamp(-1, 0, 10), 0)
        self.assertEqual(MathTools.clamp(11, 0, 10), 10)
        with self.assertRaises(ValueError):
            MathTools.clamp(1, 2, 1)

    def test_finite(self) -> None:
        self.assertEqual(MathTools.finite(None), 0.0)
        self.assertEqual(MathTools.finite("12.5"), 12.5)
        self.assertEqual(MathTools.finite("abc", 3.0), 3.0)
        self.assertEqual(MathTools.finite(float("nan"), 1.0), 1.0)
        self.assertEqual(MathTools.finite(float("inf")), 0.0)
        self.assertEqual(MathTools.finite(True, 2.0), 2.0)

    def test_safe_divide(self) -> None:
        self.assertEqual(MathTools.safe_divide(6, 3), 2)
        self.assertEqual(MathTools.safe_divide(5, 0), 0.0)
        self.assertEqual(MathTools.safe_divide(5, None), 0.0)

    def test_median_and_average(self) -> None:
        self.assertEqual(MathTools.median([3, 1, 2]), 2.0)
        self.assertEqual(MathTools.median([1, 2, 3, 4]), 2.5)
        self.assertEqual(MathTools.median([]), 0.0)
        self.assertEqual(MathTools.average([2, 4]), 3.0)
        self.assertEqual(MathTools.average([]), 0.0)

    def test_decay_factor(self) -> None:
        self.assertEqual(MathTools.decay_factor(0), 1.0)
        self.assertAlmostEqual(MathTools.decay_factor(36), 0.5)
        self.assertAlmostEqual(MathTools.decay_factor(72), 0.25)
        self.assertEqual(MathTools.decay_factor(-5), 1.0)
        self.assertAlmostEqual(MathTools.decay_factor(12, half_life_hours=12), 0.5)

    def test_parse_timestamp(self) -> None:
        parsed = MathTools.parse_timestamp("2024-01-01T10:00:00Z")
        self.assertEqual(parsed.tzinfo, datetime.timezone.utc)
        self.assertEqual(parsed.hour, 10)
        naive = MathTools.parse_timestamp("2024-01-01T10:00:00")
        self.assertEqual(naive, parsed)
        self.assertIsNone(MathTools.parse_timestamp("yesterday"))
        self.assertIsNone(MathTools.parse_timestamp(None))


class CardioEstimatorTestCase(unittest.TestCase):
    def test_no_duration(self) -> None:
        self.assertIsNone(CardioEstimator.estimate_met(0, 2))
        self.assertIsNone(CardioEstimator.estimate_met(float("nan"), 2))

    def test_missing_distance_defaults(self) -> None:
        self.assertEqual(CardioEstimator.estimate_met(30, 0), 3.5)
        self.assertEqual(CardioEstimator.estimate_met(30, None), 3.5)

    def test_walking_formula(self) -> None:
        # 1.5 miles in 30 minutes = 3 mph = 80.4672 m/min
        self.assertAlmostEqual(
            CardioEstimator.estimate_met(30, 1.5), (0.1 * 80.4672 + 3.5) / 3.5, places=6
        )

    def test_running_formula(self) -> None:
        # 3 miles in 30 minutes = 6 mph = 160.9344 m/min
        self.assertAlmostEqual(
            CardioEstimator.estimate_met(30, 3), (0.2 * 160.9344 + 3.5) / 3.5, places=6
        )

    def test_incline_adds_cost(self) -> None:
        flat = CardioEstimator.estimate_met(30, 1.5, 0)
        hill = CardioEstimator.estimate_met(30, 1.5, 10)
        self.assertGreater(hill, flat)
        self.assertEqual(
            CardioEstimator.estimate_met(30, 1.5, 40),
            CardioEstimator.estimate_met(30, 1.5, 25),
        )

    def test_kilometres_detected(self) -> None:
        self.assertAlmostEqual(CardioEstimator.pace_mph(10, 3), 3 * 0.621371 * 6, places=6)
        self.assertAlmostEqual(CardioEstimator.pace_mph(30, 1.5), 3.0)

    def test_met_clamped(self) -> None:
        self.assertEqual(CardioEstimator.estimate_met(60, 11.9, 25), 18.0)


if __name__ == "__main__":
    unittest.main()
