"""FlowRelay: workflow lifecycle events, destination dispatch and execution history."""

__version__ = "0.1.0"
