############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: Unit test package
#
############################################################

"""Unit tests for temper."""
