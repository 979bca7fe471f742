"""Ramp autoscaler: drives container replicas under a synthetic demand ramp."""

__version__ = "1.0.0"
