############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: Test package
#
############################################################

"""Tests for temper."""
