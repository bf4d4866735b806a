############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# __init__.py: Core control logic package
#
############################################################

"""Core control logic for temper."""
