"""Command execution engines."""

from agentbox.execution.channel import StreamChannel
from agentbox.execution.engine import CommandOptions, ExecutionEngine
from agentbox.execution.local import LocalExecutionEngine

__all__ = [
    "CommandOptions",
    "ExecutionEngine",
    "LocalExecutionEngine",
    "StreamChannel",
]
