"""Workflow records and the operations that emit lifecycle events."""

from .schema import NodesEdges, Workflow, WorkflowPatch
from .service import WorkflowService
from .store import WorkflowStore

__all__ = ["NodesEdges", "Workflow", "WorkflowPatch", "WorkflowService", "WorkflowStore"]
