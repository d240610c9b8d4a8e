"""Orchestrator module - Step loop, lifecycle events and recovery for one intent spec."""

from .orchestrator import EXECUTION_EVENTS, ExecutionOrchestrator

__all__ = ["EXECUTION_EVENTS", "ExecutionOrchestrator"]
