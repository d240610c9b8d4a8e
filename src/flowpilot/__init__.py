"""flowpilot - Adaptive execution and recovery for recorded browser workflows."""

__version__ = "0.1.0"
