############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# curve.py: Piecewise-linear temperature response curves
#
############################################################

"""Piecewise-linear temperature -> output curves.

A curve is configured from a setpoint string such as ``"30:20 60:50 80:100"``
and evaluated by linear interpolation between the two bracketing points.
Readings outside the configured range are clamped to the boundary values.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True, order=True)
class CurvePoint:
    """One temperature (degrees C) -> value setpoint."""

    temperature: int
    value: int


def _is_number(text: str) -> bool:
    # str.isdigit also admits superscripts and other digits int() rejects
    return text.isascii() and text.isdigit()


def _parse_token(token: str) -> CurvePoint | None:
    temp_str, sep, value_str = token.partition(":")
    if not sep or not _is_number(temp_str) or not _is_number(value_str):
        return None
    return CurvePoint(int(temp_str), int(value_str))


class CurveController:
    """Turns a temperature reading into a bounded control output."""

    def __init__(self):
        self._points: Tuple[CurvePoint, ...] = ()

    @classmethod
    def from_setpoints(cls, setpoint_text: str) -> "CurveController":
        curve = cls()
        curve.configure(setpoint_text)
        return curve

    def configure(self, setpoint_text: str) -> None:
        """Parse whitespace-separated ``temp:value`` tokens.

        Malformed tokens are skipped so a partially valid configuration still
        yields a usable curve.
        """
        points = []
        for token in (setpoint_text or "").split():
            point = _parse_token(token)
            if point is not None:
                points.append(point)
        # Stable sort keeps duplicate temperatures in configuration order
        points.sort(key=lambda p: p.temperature)
        self._points = tuple(points)

    @property
    def points(self) -> Tuple[CurvePoint, ...]:
        return self._points

    def is_empty(self) -> bool:
        return not self._points

    def evaluate(self, current_temp: float) -> int:
        """Return the curve output for ``current_temp`` (0 for an empty curve)."""
        points = self._points
        if not points:
            return 0
        if current_temp <= points[0].temperature:
            return points[0].value
        if current_temp >= points[-1].temperature:
            return points[-1].value

        for lower, upper in zip(points, points[1:]):
            if lower.temperature <= current_temp <= upper.temperature:
                temp_range = upper.temperature - lower.temperature
                if temp_range == 0:
                    return lower.value
                value_range = upper.value - lower.value
                offset = current_temp - lower.temperature
                return int(lower.value + value_range * offset / temp_range)

        return points[0].value

    def __repr__(self) -> str:
        setpoints = " ".join(f"{p.temperature}:{p.value}" for p in self._points)
        return f"CurveController({setpoints!r})"
