"""File based workflow storage organized by user."""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..errors import WorkflowNotFound
from .schema import NodesEdges, Workflow, WorkflowPatch

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class WorkflowStore:
    """Stores workflows as JSON files, one directory per user."""

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, user_id: str, workflow_id: str) -> Path:
        return self.base_dir / user_id / f"{workflow_id}.json"

    def _find(self, workflow_id: str) -> Optional[Path]:
        if not _SAFE_ID.match(workflow_id):
            return None
        matches = list(self.base_dir.glob(f"*/{workflow_id}.json"))
        return matches[0] if matches else None

    def _write(self, workflow: Workflow) -> None:
        path = self._path(workflow.user_id, workflow.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Replace-on-commit so readers never see a half-written file.
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(workflow.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    def create_workflow(self, user_id: str, name: str, description: str = "") -> Workflow:
        """Create and persist a new, unpublished workflow."""
        if not _SAFE_ID.match(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        workflow = Workflow(id=uuid.uuid4().hex, user_id=user_id, name=name, description=description)
        with self._lock:
            self._write(workflow)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        """Load a workflow by ID. Raises WorkflowNotFound."""
        with self._lock:
            path = self._find(workflow_id)
            if path is None:
                raise WorkflowNotFound(workflow_id)
            return Workflow.model_validate_json(path.read_text(encoding="utf-8"))

    def get_workflow_name(self, workflow_id: str) -> Optional[str]:
        """Stored name of a workflow, or None if it does not exist."""
        try:
            return self.get_workflow(workflow_id).name
        except WorkflowNotFound:
            return None

    def list_workflows(self, user_id: str) -> list[Workflow]:
        """All workflows of a user, newest first."""
        user_dir = self.base_dir / user_id
        if not _SAFE_ID.match(user_id) or not user_dir.exists():
            return []

        with self._lock:
            workflows = [
                Workflow.model_validate(json.loads(p.read_text(encoding="utf-8")))
                for p in user_dir.glob("*.json")
            ]
        workflows.sort(key=lambda wf: wf.created_at, reverse=True)
        return workflows

    def update_workflow(self, workflow_id: str, patch: WorkflowPatch) -> Workflow:
        """Apply a partial update and return the stored result."""
        with self._lock:
            current = self.get_workflow(workflow_id)
            changes = patch.changes()
            if "slack_channels" in changes:
                merged = list(current.slack_channels)
                for channel in changes["slack_channels"] or []:
                    if channel not in merged:
                        merged.append(channel)
                changes["slack_channels"] = merged
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = current.model_copy(update=changes)
            self._write(updated)
        return updated

    def get_nodes_edges(self, workflow_id: str) -> Optional[NodesEdges]:
        """The graph document, or None unless both nodes and edges are set."""
        workflow = self.get_workflow(workflow_id)
        if workflow.nodes and workflow.edges:
            return NodesEdges(nodes=workflow.nodes, edges=workflow.edges)
        return None

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow. Returns True if it existed."""
        with self._lock:
            path = self._find(workflow_id)
            if path is None:
                return False
            path.unlink()
            return True
