############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: Root package initialization and version definition
#
############################################################

"""temper - GPU thermal and power control daemon."""

__version__ = "0.4.0"
