############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: HTTP API package exports
#
############################################################

"""HTTP surface for temper."""

from temper.api.snapshot_server import MetricsSnapshotServer

__all__ = ["MetricsSnapshotServer"]
