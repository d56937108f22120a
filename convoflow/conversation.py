"""
Conversation runtime: the boundary a chat transport talks to.

The runtime follows this cycle:
1. Load the agent's workflow once, at session start
2. Validate it and place the cursor on the entry node
3. Advance turn by turn on user replies, auto-chaining through automatic steps
4. Hand back instructions + resolved knowledge for the node the session rests on

Each session is pinned to the document it started with; saving a newer
version never changes a session that is already running.
"""

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Deque, Dict, List, Optional

from .config import EngineSettings
from .workflow import executor
from .workflow.errors import NoBranchMatched, SessionNotFound, WorkflowValidationError
from .workflow.guards import default_matcher
from .workflow.knowledge import Knowledge, KnowledgeResolver
from .workflow.models import SessionState, Signal
from .workflow.schema import WorkflowDocument, WorkflowSnapshot
from .workflow.store import InMemoryWorkflowStore, JsonFileWorkflowStore, WorkflowStore
from .workflow.validator import ValidationResult, validate

logger = getLogger(__name__)


@dataclass
class SessionView:
    """ What a caller sees after starting or advancing a session. """
    session_id: str
    node_id: Optional[str]
    instructions: str
    knowledge: Knowledge
    awaiting_reply: bool
    terminated: bool
    document_version: str
    instructions_detailed: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "nodeId": self.node_id,
            "instructions": self.instructions,
            "instructionsDetailed": self.instructions_detailed,
            "knowledge": self.knowledge.to_dict(),
            "awaitingReply": self.awaiting_reply,
            "terminated": self.terminated,
            "documentVersion": self.document_version,
        }


@dataclass
class _Session:
    agent_id: str
    workflow: WorkflowSnapshot
    state: SessionState
    started_at: float = field(default_factory=time.time)


class ConversationRuntime:
    """
    Session registry on top of a WorkflowStore.

    The store is read only in ``start_session``; every later turn runs
    against the document captured then.
    """

    def __init__(
        self,
        store: WorkflowStore,
        settings: Optional[EngineSettings] = None,
        matcher=None,
    ):
        """
        Args:
            store: Persistence adapter keyed by agent id
            settings: Engine tunables (auto-chain limit, execution log size)
            matcher: Branch condition matcher ``(condition, signal) -> bool``
        """
        self.store = store
        self.settings = settings or EngineSettings()
        self.matcher = matcher or default_matcher
        self.resolver = KnowledgeResolver()
        self.execution_log: Deque[Dict[str, Any]] = deque(maxlen=self.settings.execution_log_limit)
        self._sessions: Dict[str, _Session] = {}

    @classmethod
    def from_settings(cls, settings: Optional[EngineSettings] = None, matcher=None) -> "ConversationRuntime":
        """File-backed store when ``store_dir`` is set, in-memory otherwise."""
        settings = settings or EngineSettings.load()
        if settings.store_dir:
            store: WorkflowStore = JsonFileWorkflowStore(settings.store_dir)
        else:
            store = InMemoryWorkflowStore()
        return cls(store, settings, matcher)

    # -- authoring --

    def load_workflow(self, agent_id: str) -> WorkflowDocument:
        return self.store.load(agent_id)

    def save_workflow(self, agent_id: str, workflow: WorkflowDocument) -> ValidationResult:
        """Validate, then replace the stored document. Rejected documents are not persisted."""
        result = validate(workflow)
        if not result.ok:
            self._log(f"[SAVE] Rejected workflow for agent {agent_id}: {len(result.issues)} issue(s)", warn=True)
            return result
        self.store.save(agent_id, workflow)
        self._log(f"[SAVE] Workflow saved for agent {agent_id}")
        return result

    # -- sessions --

    def start_session(self, agent_id: str) -> SessionView:
        """
        Start a conversation against the agent's current workflow.

        Raises WorkflowValidationError when the stored document is not
        executable. If an automatic branch at the start finds no match the
        session is still registered, parked at that branch, and
        NoBranchMatched is raised with ``session_id`` set.
        """
        doc = self.store.load(agent_id)
        result = validate(doc)
        if not result.ok:
            self._log(f"[START] Agent {agent_id} has a non-executable workflow", warn=True)
            raise WorkflowValidationError(result.issues)

        workflow = doc.snapshot()
        session_id = uuid.uuid4().hex
        try:
            state = executor.start(
                workflow,
                validated=True,
                matcher=self.matcher,
                max_auto_steps=self.settings.max_auto_steps,
            )
        except NoBranchMatched as exc:
            self._sessions[session_id] = _Session(agent_id, workflow, exc.state)
            exc.session_id = session_id
            self._log(f"[START] Session {session_id} parked at branch {exc.node_id}", warn=True)
            raise

        self._sessions[session_id] = _Session(agent_id, workflow, state)
        self._log(f"[START] Session {session_id} for agent {agent_id} at node {state.current_node_id}")
        return self._view(session_id)

    def advance_session(self, session_id: str, signal: Signal) -> SessionView:
        """
        Feed one signal to the session.

        On NoBranchMatched the session is parked at the branch that found no
        match, whether that is the node it was resting on or one reached by
        auto-chaining, and can be advanced again from there.
        """
        session = self._get(session_id)
        try:
            state = executor.advance(
                session.workflow,
                session.state,
                signal,
                matcher=self.matcher,
                max_auto_steps=self.settings.max_auto_steps,
            )
        except NoBranchMatched as exc:
            session.state = exc.state
            exc.session_id = session_id
            self._log(f"[TURN] Session {session_id}: no branch matched at {exc.node_id}", warn=True)
            raise

        previous = session.state.current_node_id
        session.state = state
        self._log(f"[TURN] Session {session_id}: {previous} -> {state.current_node_id}"
                  f"{' (terminated)' if state.terminated else ''}")
        return self._view(session_id)

    def session_state(self, session_id: str) -> SessionState:
        return self._get(session_id).state

    def end_session(self, session_id: str) -> None:
        self._get(session_id)
        del self._sessions[session_id]
        self._log(f"[END] Session {session_id} dropped")

    def active_sessions(self) -> List[str]:
        return list(self._sessions)

    # -- internals --

    def _get(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _view(self, session_id: str) -> SessionView:
        session = self._sessions[session_id]
        state = session.state
        node = session.workflow.node_by_id(state.current_node_id) if state.current_node_id else None
        if node is None:
            knowledge = Knowledge()
        else:
            knowledge = self.resolver.resolve(session.workflow.document, node.id, version=session.workflow.version)
        return SessionView(
            session_id=session_id,
            node_id=state.current_node_id,
            instructions=node.instructions if node else "",
            instructions_detailed=node.instructions_detailed if node else "",
            knowledge=knowledge,
            awaiting_reply=state.awaiting_reply,
            terminated=state.terminated,
            document_version=state.document_version,
        )

    def _log(self, message: str, warn: bool = False):
        """Add a message to execution log."""
        self.execution_log.append({
            'timestamp': time.time(),
            'message': message,
        })
        if warn:
            logger.warning(message)
        else:
            logger.info(message)
