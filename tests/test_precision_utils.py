import logging
from decimal import Decimal

import pytest

from precision_utils import finite_or_zero, format_decimal_for_step, snap_down, to_float


class TestToFloat:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("10.51", 10.51),
            (" 3 ", 3.0),
            (7, 7.0),
            (2.5, 2.5),
            (Decimal("0"), 0.0),
            (Decimal("1.25"), 1.25),
            ("1,000.5", 1000.5),
            (None, 0.0),
            ("", 0.0),
        ],
    )
    def test_coerces_numeric_encodings(self, raw, expected):
        assert to_float(raw) == expected

    def test_percent_suffix_is_not_a_number(self, caplog):
        with caplog.at_level(logging.WARNING, logger="precision_utils"):
            assert to_float("10%", "leverage") == 0.0
        assert "float_coerce_failed" in caplog.text

    def test_garbage_string_logs_and_returns_zero(self, caplog):
        with caplog.at_level(logging.WARNING, logger="precision_utils"):
            assert to_float("abc", "available") == 0.0
        assert "float_coerce_failed" in caplog.text
        assert "available" in caplog.text

    @pytest.mark.parametrize("raw", ["nan", "inf", float("nan"), float("-inf")])
    def test_non_finite_becomes_zero(self, raw):
        assert to_float(raw) == 0.0

    @pytest.mark.parametrize("raw", [True, [], {"a": 1}, object()])
    def test_unsupported_types_become_zero(self, raw):
        assert to_float(raw) == 0.0


def test_finite_or_zero():
    assert finite_or_zero(1.5) == 1.5
    assert finite_or_zero(float("nan")) == 0.0
    assert finite_or_zero(float("inf")) == 0.0


def test_format_decimal_for_step_rounds_down():
    assert format_decimal_for_step(Decimal("0.0129"), Decimal("0.001")) == "0.012"
    assert format_decimal_for_step(Decimal("12"), Decimal("1")) == "12"


def test_snap_down():
    assert snap_down(Decimal("0.0157"), Decimal("0.005")) == Decimal("0.015")
    assert snap_down(Decimal("9.99"), Decimal("1")) == Decimal("9")
    assert snap_down(Decimal("3"), Decimal("0")) == Decimal("3")
