############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# models.py: GPU telemetry data models and throttle reasons
#
############################################################

"""GPU telemetry data models."""

from dataclasses import dataclass, field
from typing import Tuple

# NVML clocks throttle reason bits (nvmlClocksThrottleReason*)
THROTTLE_GPU_IDLE = 0x0000000000000001
THROTTLE_APPLICATIONS_CLOCKS_SETTING = 0x0000000000000002
THROTTLE_SW_POWER_CAP = 0x0000000000000004
THROTTLE_HW_SLOWDOWN = 0x0000000000000008
THROTTLE_SYNC_BOOST = 0x0000000000000010
THROTTLE_SW_THERMAL_SLOWDOWN = 0x0000000000000020
THROTTLE_HW_THERMAL_SLOWDOWN = 0x0000000000000040
THROTTLE_HW_POWER_BRAKE_SLOWDOWN = 0x0000000000000080

# Any of these means the GPU is already shedding heat on its own
THERMAL_THROTTLE_MASK = (
    THROTTLE_SW_THERMAL_SLOWDOWN | THROTTLE_HW_THERMAL_SLOWDOWN | THROTTLE_HW_SLOWDOWN
)

P_STATE_DESCRIPTIONS = {
    0: "Maximum Performance",
    1: "Performance",
    2: "Balanced",
    5: "Compute/Video",
    8: "Idle/Low Power",
    15: "Minimum Power",
}


def is_thermally_throttled(reasons: int) -> bool:
    return bool(reasons & THERMAL_THROTTLE_MASK)


def throttle_alert(reasons: int) -> str:
    """Human-readable description of the most severe thermal throttle bit."""
    if reasons & THROTTLE_SW_THERMAL_SLOWDOWN:
        return "SW Thermal Slowdown"
    if reasons & THROTTLE_HW_THERMAL_SLOWDOWN:
        return "HW Thermal Slowdown"
    if reasons & THROTTLE_HW_SLOWDOWN:
        return "HW Slowdown"
    return ""


def p_state_description(p_state: int) -> str:
    return P_STATE_DESCRIPTIONS.get(p_state, "Unknown")


@dataclass(frozen=True)
class GpuClocks:
    """Current and maximum clocks in MHz."""

    graphics: int = 0
    memory: int = 0
    sm: int = 0
    video: int = 0
    max_graphics: int = 0
    max_memory: int = 0
    max_sm: int = 0
    max_video: int = 0


@dataclass(frozen=True)
class PcieInfo:
    """PCIe link state; throughput in KB/s."""

    tx_throughput: int = 0
    rx_throughput: int = 0
    gen: int = 0
    width: int = 0


@dataclass(frozen=True)
class EccCounts:
    """Corrected (single) and uncorrected (double) ECC error counts."""

    volatile_single: int = 0
    volatile_double: int = 0
    aggregate_single: int = 0
    aggregate_double: int = 0


@dataclass(frozen=True)
class GpuProcess:
    """A compute or graphics process holding GPU memory."""

    pid: int
    used_memory: int = 0  # bytes
    name: str = "Unknown"


@dataclass(frozen=True)
class GpuTelemetrySnapshot:
    """Per-device telemetry gathered once per control loop tick."""

    index: int
    name: str = "Unknown"
    serial: str = "Unknown"
    vbios: str = "Unknown"
    p_state: int = 999
    temperature: int = 0  # degrees C
    fan_speed: int = 0  # percent, actual
    target_fan: int = 0  # percent, commanded
    power_usage: int = 0  # mW
    power_limit: int = 0  # mW
    utilization_gpu: int = 0  # percent
    utilization_memory: int = 0  # percent
    memory_total: int = 0  # bytes
    memory_used: int = 0  # bytes
    clocks: GpuClocks = field(default_factory=GpuClocks)
    pcie: PcieInfo = field(default_factory=PcieInfo)
    ecc: EccCounts = field(default_factory=EccCounts)
    processes: Tuple[GpuProcess, ...] = ()
    throttle_reasons: int = 0
    reactive_override: bool = False

    @property
    def p_state_description(self) -> str:
        return p_state_description(self.p_state)

    @property
    def throttle_alert(self) -> str:
        return throttle_alert(self.throttle_reasons)

    @property
    def thermally_throttled(self) -> bool:
        return is_thermally_throttled(self.throttle_reasons)
