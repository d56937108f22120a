"""
Workflow Store: load-one / replace-one persistence keyed by agent id.

Two adapters ship with the engine: an in-memory store for tests and
embedding, and a JSON-file store (one file per agent). Both refuse
documents that fail validation and return the canonical empty document
for agents that never saved one.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from logging import getLogger
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import quote, unquote

from .compiler import parse_workflow
from .schema import WorkflowDocument, empty_document
from .validator import ensure_valid

logger = getLogger(__name__)


class WorkflowStore(ABC):
    """ Abstract base class for workflow persistence. """

    def load(self, agent_id: str) -> WorkflowDocument:
        """Latest saved document for ``agent_id``, or the empty document."""
        doc = self._read(agent_id)
        if doc is None:
            logger.debug(f"No workflow saved for agent {agent_id}; using empty document")
            return empty_document()
        return doc

    def save(self, agent_id: str, workflow: WorkflowDocument) -> str:
        """
        Validate and atomically replace the agent's document.
        Returns the version stamp of the stored document.
        """
        ensure_valid(workflow)
        self._write(agent_id, workflow)
        version = workflow.version
        logger.info(f"Workflow saved for agent {agent_id} (version {version[:12]})")
        return version

    @abstractmethod
    def exists(self, agent_id: str) -> bool:
        ...

    @abstractmethod
    def delete(self, agent_id: str) -> bool:
        ...

    @abstractmethod
    def list_agents(self) -> List[str]:
        ...

    @abstractmethod
    def _read(self, agent_id: str) -> Optional[WorkflowDocument]:
        ...

    @abstractmethod
    def _write(self, agent_id: str, workflow: WorkflowDocument) -> None:
        ...


class InMemoryWorkflowStore(WorkflowStore):
    def __init__(self) -> None:
        self._docs: Dict[str, str] = {}
        self._lock = threading.Lock()

    def exists(self, agent_id: str) -> bool:
        return agent_id in self._docs

    def delete(self, agent_id: str) -> bool:
        with self._lock:
            return self._docs.pop(agent_id, None) is not None

    def list_agents(self) -> List[str]:
        return sorted(self._docs)

    def _read(self, agent_id: str) -> Optional[WorkflowDocument]:
        # stored serialized so callers never share a mutable instance
        raw = self._docs.get(agent_id)
        if raw is None:
            return None
        return WorkflowDocument.model_validate_json(raw)

    def _write(self, agent_id: str, workflow: WorkflowDocument) -> None:
        payload = workflow.model_dump_json(by_alias=True)
        with self._lock:
            self._docs[agent_id] = payload


class JsonFileWorkflowStore(WorkflowStore):
    """
    Persist one JSON file per agent under ``storage_dir``.

    File names are the percent-encoded agent id, so every id maps to its own
    file and ``list_agents`` returns the ids exactly as they were saved.
    """

    def __init__(self, storage_dir: Union[str, Path]) -> None:
        self._dir = Path(storage_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"JsonFileWorkflowStore initialized at {self._dir}")

    def exists(self, agent_id: str) -> bool:
        return self._path_for(agent_id).exists()

    def delete(self, agent_id: str) -> bool:
        path = self._path_for(agent_id)
        with self._lock:
            if path.exists():
                path.unlink()
                logger.info(f"Workflow deleted for agent {agent_id}")
                return True
        return False

    def list_agents(self) -> List[str]:
        return sorted(unquote(path.stem) for path in self._dir.glob("*.json"))

    def _read(self, agent_id: str) -> Optional[WorkflowDocument]:
        path = self._path_for(agent_id)
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        return parse_workflow(data)

    def _write(self, agent_id: str, workflow: WorkflowDocument) -> None:
        path = self._path_for(agent_id)
        payload = workflow.model_dump_json(by_alias=True, indent=2)
        with self._lock:
            # write-then-rename: readers see the old file or the new one, never half
            fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise

    def _path_for(self, agent_id: str) -> Path:
        if not agent_id:
            raise ValueError(f"Invalid agent id: {agent_id!r}")
        # reversible, and never contains a path separator
        return self._dir / f"{quote(agent_id, safe='')}.json"
