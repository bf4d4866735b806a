############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: Inference service monitoring package exports
#
############################################################

"""Inference service (llama.cpp) monitoring."""

from temper.core.inference.models import (
    InferenceServiceSnapshot,
    InferenceStatus,
    SlotMetrics,
)
from temper.core.inference.monitor import InferenceServiceMonitor

__all__ = [
    "InferenceServiceMonitor",
    "InferenceServiceSnapshot",
    "InferenceStatus",
    "SlotMetrics",
]
