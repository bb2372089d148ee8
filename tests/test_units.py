import unittest

from amlchain.errors import ValidationError
from amlchain.units import from_smallest_unit, is_positive_units, to_smallest_unit


class TestToSmallestUnit(unittest.TestCase):

    def test_conversions(self):
        self.assertEqual(to_smallest_unit("100.50"), "100500000")
        self.assertEqual(to_smallest_unit("1"), "1000000")
        self.assertEqual(to_smallest_unit("0.000001"), "1")
        self.assertEqual(to_smallest_unit("2.5000000"), "2500000")
        self.assertEqual(to_smallest_unit("1.5", decimals=18), "1500000000000000000")

    def test_no_float_rounding(self):
        self.assertEqual(to_smallest_unit("0.3"), "300000")
        self.assertEqual(to_smallest_unit("123456789012345678901234567890.123456"),
                         "123456789012345678901234567890123456")

    def test_too_many_decimals(self):
        with self.assertRaises(ValidationError) as ctx:
            to_smallest_unit("0.0000001")
        self.assertEqual(ctx.exception.field, "amount")

    def test_rejects_malformed(self):
        for bad in ("-1", "+1", "1e6", "abc", "", "1.", ".5", "1,5", None, 1.5):
            with self.assertRaises(ValidationError, msg=repr(bad)):
                to_smallest_unit(bad)


class TestFromSmallestUnit(unittest.TestCase):

    def test_conversions(self):
        self.assertEqual(from_smallest_unit("100500000"), "100.5")
        self.assertEqual(from_smallest_unit("1000000"), "1")
        self.assertEqual(from_smallest_unit("1"), "0.000001")
        self.assertEqual(from_smallest_unit("0"), "0")
        self.assertEqual(from_smallest_unit("7", decimals=0), "7")

    def test_rejects_non_integer(self):
        with self.assertRaises(ValidationError):
            from_smallest_unit("1.5")

    def test_round_trip(self):
        for human in ("100.5", "0.000001", "1", "123456.789012"):
            self.assertEqual(from_smallest_unit(to_smallest_unit(human)), human)
        for units in ("100500000", "1", "999999999999999999999999"):
            self.assertEqual(to_smallest_unit(from_smallest_unit(units)), units)

    def test_is_positive_units(self):
        self.assertTrue(is_positive_units("1"))
        self.assertFalse(is_positive_units("0"))
        self.assertFalse(is_positive_units("-1"))
        self.assertFalse(is_positive_units(5))


if __name__ == "__main__":
    unittest.main()
