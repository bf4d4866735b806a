############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# backends.py: BMC command backends (FreeIPMI, ipmitool, ssh)
#
############################################################

"""Command builders and output parsers for the supported BMC tools.

Every backend turns the same two requests into an argv list:

- a bulk sensor query, parsed into a ``ChassisTelemetrySnapshot``
- a raw IPMI command given as a list of hex byte strings

Parsing is lenient: unparseable readings and unknown sensors are skipped.
"""

import csv
from dataclasses import dataclass, field
from typing import List, Optional

from temper.core.chassis.models import ChassisTelemetrySnapshot

SENSOR_TIMEOUT = 25  # seconds, bulk sensor reads over LAN are slow
RAW_TIMEOUT = 10  # seconds
DETECT_TIMEOUT = 3  # seconds

FREEIPMI_VERSION_CHECK = ["ipmi-sensors", "--version"]

# Shared LAN session options for FreeIPMI tools
_FREEIPMI_SESSION_ARGS = [
    "--driver-type=LAN_2_0",
    "-l", "OPERATOR",
    "--workaround-flags=authcap,idzero,unexpectedauth,forcepermsg",
    "--session-timeout=20000",
    "--retransmission-timeout=2000",
]

# ipmitool reports a unit column instead of a sensor type
_IPMITOOL_UNIT_TYPES = {
    "degrees c": "Temperature",
    "rpm": "Fan",
    "amps": "Current",
    "volts": "Voltage",
    "watts": "Power",
}


@dataclass
class _SensorAccumulator:
    """Mutable scratch space filled while scanning sensor output."""

    inlet_temp: int = 0
    exhaust_temp: int = 0
    power_consumption: int = 0
    fan_speeds: List[int] = field(default_factory=list)
    cpu_temps: List[int] = field(default_factory=list)
    psu1_current: float = 0.0
    psu2_current: float = 0.0
    psu1_voltage: float = 0.0
    psu2_voltage: float = 0.0

    def apply(self, name: str, sensor_type: str, value: float) -> None:
        """Map one named reading onto the snapshot fields."""
        if name == "Inlet Temp":
            self.inlet_temp = int(value)
        elif name == "Exhaust Temp":
            self.exhaust_temp = int(value)
        elif name == "Pwr Consumption":
            self.power_consumption = int(value)
        elif "Temp" in name and sensor_type == "Temperature":
            self.cpu_temps.append(int(value))
        elif sensor_type == "Fan":
            self.fan_speeds.append(int(value))
        elif name == "Current 1" and sensor_type == "Current":
            self.psu1_current = value
        elif name == "Current 2" and sensor_type == "Current":
            self.psu2_current = value
        elif name == "Voltage 1" and sensor_type == "Voltage":
            self.psu1_voltage = value
        elif name == "Voltage 2" and sensor_type == "Voltage":
            self.psu2_voltage = value

    def freeze(self) -> ChassisTelemetrySnapshot:
        return ChassisTelemetrySnapshot(
            inlet_temp=self.inlet_temp,
            exhaust_temp=self.exhaust_temp,
            power_consumption=self.power_consumption,
            fan_speeds=tuple(self.fan_speeds),
            cpu_temps=tuple(self.cpu_temps),
            psu1_current=self.psu1_current,
            psu2_current=self.psu2_current,
            psu1_voltage=self.psu1_voltage,
            psu2_voltage=self.psu2_voltage,
            available=self.inlet_temp > 0,
        )


def _parse_reading(reading: str) -> Optional[float]:
    try:
        value = float(reading.strip())
    except (ValueError, AttributeError):
        return None
    # float() accepts "nan" and "inf", neither is a sensor reading
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


class ChassisBackend:
    """Base class for BMC tool backends."""

    name = "base"

    def __init__(self, host: str, user: str, password: str):
        self.host = host
        self.user = user
        self.password = password

    def sensor_command(self) -> List[str]:
        raise NotImplementedError

    def raw_command(self, raw_bytes: List[str]) -> List[str]:
        raise NotImplementedError

    def parse_sensors(self, output: str) -> ChassisTelemetrySnapshot:
        raise NotImplementedError


class FreeIPMIBackend(ChassisBackend):
    """FreeIPMI ``ipmi-sensors`` / ``ipmi-raw`` over LAN 2.0 (fastest)."""

    name = "freeipmi"

    def _session_args(self) -> List[str]:
        return ["-h", self.host, "-u", self.user, "-p", self.password] + _FREEIPMI_SESSION_ARGS

    def sensor_command(self) -> List[str]:
        return (
            ["ipmi-sensors"]
            + self._session_args()
            + [
                "--sdr-cache-recreate",
                "--comma-separated-output",
                "--output-sensor-state",
                "--no-header-output",
                "--quiet-cache",
                "--ignore-not-available-sensors",
                "--ignore-unrecognized-events",
            ]
        )

    def raw_command(self, raw_bytes: List[str]) -> List[str]:
        return ["ipmi-raw"] + self._session_args() + list(raw_bytes)

    def parse_sensors(self, output: str) -> ChassisTelemetrySnapshot:
        """Parse ``ID,Name,Type,State,Reading,Units[,Event]`` CSV rows."""
        acc = _SensorAccumulator()
        for fields in csv.reader((output or "").splitlines(), quotechar="'"):
            if len(fields) < 6:
                continue
            name = fields[1].strip()
            sensor_type = fields[2].strip()
            value = _parse_reading(fields[4])
            if value is None:
                continue
            acc.apply(name, sensor_type, value)
        return acc.freeze()


class IpmitoolBackend(ChassisBackend):
    """``ipmitool -I lanplus`` with pipe-delimited ``sensor`` output."""

    name = "ipmitool"

    def _base_args(self) -> List[str]:
        return [
            "ipmitool", "-I", "lanplus",
            "-H", self.host, "-U", self.user, "-P", self.password,
        ]

    def sensor_command(self) -> List[str]:
        return self._base_args() + ["sensor"]

    def raw_command(self, raw_bytes: List[str]) -> List[str]:
        return self._base_args() + ["raw"] + list(raw_bytes)

    def parse_sensors(self, output: str) -> ChassisTelemetrySnapshot:
        """Parse ``Name | Reading | Unit | Status | ...`` rows."""
        acc = _SensorAccumulator()
        for line in (output or "").splitlines():
            parts = [p.strip() for p in line.split("|")]
            if len(parts) < 3:
                continue
            name, reading, unit = parts[0], parts[1], parts[2]
            sensor_type = _IPMITOOL_UNIT_TYPES.get(unit.lower())
            if sensor_type is None:
                continue
            value = _parse_reading(reading)
            if value is None:
                continue
            acc.apply(name, sensor_type, value)
        return acc.freeze()


class RemoteShellBackend(IpmitoolBackend):
    """In-band ``ipmitool`` executed on another machine over ssh."""

    name = "ssh"

    def __init__(self, host: str, user: str, password: str, ssh_target: str):
        super().__init__(host, user, password)
        self.ssh_target = ssh_target

    def _ssh_base(self) -> List[str]:
        return [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", "ConnectTimeout=5",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", "ServerAliveInterval=5",
            self.ssh_target,
        ]

    def sensor_command(self) -> List[str]:
        return self._ssh_base() + ["ipmitool", "sensor"]

    def raw_command(self, raw_bytes: List[str]) -> List[str]:
        return self._ssh_base() + ["ipmitool", "raw"] + list(raw_bytes)

