############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# test_curve.py: Unit tests for piecewise-linear curves
#
############################################################

"""Unit tests for CurveController."""

import pytest

from temper.core.curve import CurveController, CurvePoint


class TestConfigure:
    """Setpoint parsing."""

    def test_parses_and_sorts_tokens(self):
        curve = CurveController.from_setpoints("80:100 30:20 60:50")
        assert curve.points == (
            CurvePoint(30, 20),
            CurvePoint(60, 50),
            CurvePoint(80, 100),
        )

    @pytest.mark.parametrize(
        "text",
        [
            "", "   ", "abc", "30", "30:", ":50", "-5:20", "30:-20", "30.5:20", "30:20:10",
            "60:\u00b2", "\u00b2:40", "\u0663:20",
        ],
    )
    def test_malformed_tokens_are_dropped(self, text):
        assert CurveController.from_setpoints(text).is_empty()

    def test_partial_configuration_keeps_valid_tokens(self):
        curve = CurveController.from_setpoints("30:20 bogus 60:x 70:80")
        assert curve.points == (CurvePoint(30, 20), CurvePoint(70, 80))

    def test_superscript_digit_is_dropped_not_raised(self):
        curve = CurveController.from_setpoints("30:20 60:² 80:100")
        assert curve.points == (CurvePoint(30, 20), CurvePoint(80, 100))

    def test_reconfigure_replaces_points(self):
        curve = CurveController.from_setpoints("30:20")
        curve.configure("50:60 40:40")
        assert curve.points == (CurvePoint(40, 40), CurvePoint(50, 60))

    def test_duplicate_temperatures_keep_configured_order(self):
        curve = CurveController.from_setpoints("50:70 40:30 50:60")
        assert curve.points == (
            CurvePoint(40, 30),
            CurvePoint(50, 70),
            CurvePoint(50, 60),
        )


class TestEvaluate:
    """Interpolation and clamping."""

    def test_empty_curve_returns_zero(self):
        assert CurveController().evaluate(75) == 0

    def test_clamps_below_first_point(self):
        curve = CurveController.from_setpoints("30:20 80:100")
        assert curve.evaluate(10) == 20
        assert curve.evaluate(30) == 20

    def test_clamps_above_last_point(self):
        curve = CurveController.from_setpoints("30:20 80:100")
        assert curve.evaluate(95) == 100
        assert curve.evaluate(80) == 100

    def test_interpolates_and_truncates(self):
        curve = CurveController.from_setpoints("30:20 60:50 80:100")
        assert curve.evaluate(45) == 35
        assert curve.evaluate(70) == 75
        # 50 + 50 * 1 / 20 = 52.5 truncates to 52
        assert curve.evaluate(31) == 21
        assert curve.evaluate(61) == 52

    def test_descending_values(self):
        curve = CurveController.from_setpoints("40:300 80:150")
        assert curve.evaluate(60) == 225

    def test_single_point_is_constant(self):
        curve = CurveController.from_setpoints("50:42")
        assert curve.evaluate(0) == 42
        assert curve.evaluate(50) == 42
        assert curve.evaluate(120) == 42

    def test_output_bounded_by_configured_values(self):
        curve = CurveController.from_setpoints("30:25 50:40 70:90 85:100")
        for temp in range(0, 120):
            assert 25 <= curve.evaluate(temp) <= 100

    def test_monotone_curve_gives_monotone_output(self):
        curve = CurveController.from_setpoints("30:20 55:35 70:80 90:100")
        outputs = [curve.evaluate(t) for t in range(20, 100)]
        assert outputs == sorted(outputs)

    def test_duplicate_temperature_does_not_divide_by_zero(self):
        curve = CurveController.from_setpoints("40:30 50:60 50:90 60:100")
        assert curve.evaluate(50) == 60
        assert curve.evaluate(55) == 95


def test_repr_lists_setpoints():
    assert repr(CurveController.from_setpoints("60:50 30:20")) == "CurveController('30:20 60:50')"
