############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: Chassis telemetry and fan control package exports
#
############################################################

"""Chassis (BMC) telemetry and fan control."""

from temper.core.chassis.controller import ChassisTelemetryController, OperationGuard
from temper.core.chassis.models import ChassisTelemetrySnapshot

__all__ = [
    "ChassisTelemetryController",
    "OperationGuard",
    "ChassisTelemetrySnapshot",
]
