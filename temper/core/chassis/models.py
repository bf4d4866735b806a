############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# models.py: Chassis (BMC) telemetry data models
#
############################################################

"""Chassis telemetry data models."""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ChassisTelemetrySnapshot:
    """Point-in-time chassis sensor readings from the BMC.

    ``target_fan_speed`` is the last percentage commanded by the control
    loop; it is carried across polls rather than read from a sensor.
    """

    inlet_temp: int = 0  # degrees C
    exhaust_temp: int = 0  # degrees C
    power_consumption: int = 0  # Watts
    fan_speeds: Tuple[int, ...] = ()  # RPM
    cpu_temps: Tuple[int, ...] = ()  # degrees C
    psu1_current: float = 0.0  # Amps
    psu2_current: float = 0.0
    psu1_voltage: float = 0.0  # Volts
    psu2_voltage: float = 0.0
    target_fan_speed: int = 0  # percent
    available: bool = False

    @property
    def max_cpu_temp(self) -> int:
        return max(self.cpu_temps, default=0)
