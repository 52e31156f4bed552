"""Routing of tool calls onto the sync, registry-task and external-task paths."""

from nano_banana.orchestrator.dispatcher import AutoTaskPolicy, ExecutionPath, RequestOrchestrator

__all__ = [
    "AutoTaskPolicy",
    "ExecutionPath",
    "RequestOrchestrator",
]
