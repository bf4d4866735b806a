############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: GPU telemetry and NVML control package exports
#
############################################################

"""GPU telemetry and control through NVML."""

from temper.core.gpu.models import GpuTelemetrySnapshot, THERMAL_THROTTLE_MASK
from temper.core.gpu.nvml import NVMLError, NVMLManager

__all__ = [
    "GpuTelemetrySnapshot",
    "THERMAL_THROTTLE_MASK",
    "NVMLError",
    "NVMLManager",
]
