############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# conftest.py: Pytest configuration and shared test fixtures
#
############################################################

"""Pytest configuration and shared fixtures for temper tests."""

import threading
from typing import Callable, List, Optional, Sequence, Tuple

import pytest

from temper.core.process import ProcessResult


class FakeRunner:
    """Records commands and answers them from a handler function."""

    def __init__(self, handler: Optional[Callable[[List[str]], ProcessResult]] = None):
        self.calls: List[Tuple[List[str], float]] = []
        self.handler = handler or (lambda args: ProcessResult(0, "", ""))
        self._lock = threading.Lock()

    def __call__(self, args: Sequence[str], timeout: float) -> ProcessResult:
        with self._lock:
            self.calls.append((list(args), timeout))
        return self.handler(list(args))

    def commands(self) -> List[List[str]]:
        with self._lock:
            return [args for args, _ in self.calls]


@pytest.fixture
def fake_runner():
    """Command runner that succeeds with empty output unless told otherwise."""
    return FakeRunner()


# ---- Sample BMC tool output ----

FREEIPMI_SENSOR_OUTPUT = """\
1,Inlet Temp,Temperature,Nominal,24.00,C,'OK'
2,Exhaust Temp,Temperature,Nominal,38.00,C,'OK'
3,Temp,Temperature,Nominal,52.00,C,'OK'
4,Temp,Temperature,Nominal,57.00,C,'OK'
5,Fan1,Fan,Nominal,5880.00,RPM,'OK'
6,Fan2,Fan,Nominal,6000.00,RPM,'OK'
7,Pwr Consumption,Current,Nominal,434.00,W,'OK'
8,Current 1,Current,Nominal,1.20,A,'OK'
9,Current 2,Current,Nominal,0.80,A,'OK'
10,Voltage 1,Voltage,Nominal,230.00,V,'OK'
11,Voltage 2,Voltage,Nominal,228.00,V,'OK'
12,Intrusion,Physical Security,Nominal,N/A,N/A,'OK'
"""

IPMITOOL_SENSOR_OUTPUT = """\
Inlet Temp       | 22.000     | degrees C  | ok    | na        | -7.000    | 3.000     | 38.000    | 42.000    | na
Exhaust Temp     | 35.000     | degrees C  | ok    | na        | 0.000     | 8.000     | 70.000    | 75.000    | na
Temp             | 48.000     | degrees C  | ok    | na        | 3.000     | 8.000     | 85.000    | 90.000    | na
Temp             | 51.000     | degrees C  | ok    | na        | 3.000     | 8.000     | 85.000    | 90.000    | na
Fan1             | 4200.000   | RPM        | ok    | na        | 360.000   | 600.000   | na        | na        | na
Current 1        | 1.000      | Amps       | ok    | na        | na        | na        | na        | na        | na
Voltage 1        | 232.000    | Volts      | ok    | na        | na        | na        | na        | na        | na
Pwr Consumption  | 392.000    | Watts      | ok    | na        | na        | na        | 896.000   | 980.000   | na
Fan2             | na         | RPM        | na    | na        | na        | na        | na        | na        | na
Intrusion        | 0x0        | discrete   | 0x0080| na        | na        | na        | na        | na        | na
"""


@pytest.fixture
def freeipmi_output():
    return FREEIPMI_SENSOR_OUTPUT


@pytest.fixture
def ipmitool_output():
    return IPMITOOL_SENSOR_OUTPUT
