"""
Traversal engine: walks a validated workflow document one turn at a time.

Every function here is pure. The session cursor is a ``SessionState`` value
passed in and returned; the document is never mutated.

Functions accept either a ``WorkflowDocument`` or a ``WorkflowSnapshot``.
Passing the snapshot a session pinned at start avoids re-hashing and
re-indexing the document on every turn.
"""
from dataclasses import replace
from logging import getLogger
from typing import Callable, Optional, Union

from .errors import (
    AutoChainLimitExceeded,
    DocumentVersionMismatch,
    NoBranchMatched,
    SessionAlreadyTerminated,
    SignalMismatch,
    UnknownNodeError,
)
from .guards import default_matcher
from .knowledge import Knowledge, resolve
from .models import Continue, Emission, SessionState, Signal, UserReply
from .schema import GraphIndex, NodeVariant, WorkflowDocument, WorkflowNode, WorkflowSnapshot
from .validator import ensure_valid

logger = getLogger(__name__)

Matcher = Callable[[Optional[str], Signal], bool]
Workflow = Union[WorkflowDocument, WorkflowSnapshot]

DEFAULT_MAX_AUTO_STEPS = 100


def pin(doc: Workflow) -> WorkflowSnapshot:
    if isinstance(doc, WorkflowSnapshot):
        return doc
    return doc.snapshot()


def start(
    doc: Workflow,
    *,
    validated: bool = False,
    matcher: Matcher = default_matcher,
    max_auto_steps: int = DEFAULT_MAX_AUTO_STEPS,
) -> SessionState:
    """
    Place the cursor on the entry node. Non-suspending entry nodes are
    advanced through immediately, so the returned state is either waiting
    for a reply or terminated.
    """
    pinned = pin(doc)
    if not validated:
        ensure_valid(pinned.document)

    entry = pinned.document.entry_node()
    if entry is None:
        # only the empty document validates without an entry node
        logger.debug("Empty workflow: session terminates immediately")
        return SessionState(document_version=pinned.version, current_node_id=None, terminated=True)

    idx = pinned.index
    state = _land(SessionState(document_version=pinned.version, current_node_id=None), entry, idx)
    return _auto_chain(idx, state, matcher, max_auto_steps)


def advance(
    doc: Workflow,
    state: SessionState,
    signal: Signal,
    *,
    matcher: Matcher = default_matcher,
    max_auto_steps: int = DEFAULT_MAX_AUTO_STEPS,
) -> SessionState:
    """
    Consume one signal at the current node and move on.

    Raises ``SessionContractViolation`` subclasses for caller errors. A
    branch node with no matching condition raises ``NoBranchMatched``
    carrying the state parked at that branch: the given state when the
    current node is the branch, or the moved state when the branch was
    reached by auto-chaining.
    """
    pinned = pin(doc)
    if state.document_version != pinned.version:
        raise DocumentVersionMismatch(state.document_version, pinned.version)
    if state.terminated:
        raise SessionAlreadyTerminated(state.current_node_id)

    idx = pinned.index
    node = _current(idx, state)
    _check_signal(node, signal)

    moved = _step(idx, state, node, signal, matcher)
    return _auto_chain(idx, moved, matcher, max_auto_steps)


def resolve_knowledge(doc: Workflow, state: SessionState) -> Knowledge:
    if state.current_node_id is None:
        return Knowledge()
    document = doc.document if isinstance(doc, WorkflowSnapshot) else doc
    return resolve(document, state.current_node_id)


def emission_for(doc: Workflow, state: SessionState) -> Emission:
    """Instructions and knowledge for the node the session rests on."""
    if state.current_node_id is None:
        return Emission(node_id=None, terminated=state.terminated, visited=list(state.history))
    node = doc.node_by_id(state.current_node_id)
    if node is None:
        raise UnknownNodeError(state.current_node_id)
    return Emission(
        node_id=node.id,
        instructions=node.instructions,
        instructions_detailed=node.instructions_detailed,
        knowledge=resolve_knowledge(doc, state),
        awaiting_reply=state.awaiting_reply,
        terminated=state.terminated,
        visited=list(state.history),
    )


def is_terminal(node: WorkflowNode, idx: GraphIndex) -> bool:
    """End nodes, and default nodes with nowhere to go."""
    if node.variant == NodeVariant.END:
        return True
    return node.variant == NodeVariant.DEFAULT and not idx.outgoing.get(node.id)


# -- internals --

def _current(idx: GraphIndex, state: SessionState) -> WorkflowNode:
    node = idx.nodes.get(state.current_node_id)
    if node is None:
        raise UnknownNodeError(state.current_node_id)
    return node


def _check_signal(node: WorkflowNode, signal: Signal) -> None:
    if node.variant == NodeVariant.END:
        raise SessionAlreadyTerminated(node.id)
    if node.require_user_response and not isinstance(signal, UserReply):
        raise SignalMismatch(node.id, "UserReply", type(signal).__name__)
    if not node.require_user_response and not isinstance(signal, Continue):
        raise SignalMismatch(node.id, "Continue", type(signal).__name__)


def _land(state: SessionState, node: WorkflowNode, idx: GraphIndex) -> SessionState:
    terminal = is_terminal(node, idx)
    return state.moved_to(
        node.id,
        awaiting_reply=node.require_user_response and not terminal,
        terminated=terminal,
    )


def _step(
    idx: GraphIndex,
    state: SessionState,
    node: WorkflowNode,
    signal: Signal,
    matcher: Matcher,
) -> SessionState:
    if node.variant == NodeVariant.JUMP:
        target_id = node.target_node_id

    elif node.variant == NodeVariant.BRANCH:
        target_id = None
        for branch in node.branches or []:
            if matcher(branch.condition, signal):
                edge = next(
                    (e for e in idx.outgoing.get(node.id, []) if e.source_handle == branch.id),
                    None,
                )
                if edge is not None:
                    target_id = edge.target
                    logger.debug(f"Branch {node.id}: matched '{branch.id}' -> {target_id}")
                    break
        if target_id is None:
            logger.warning(f"No branch matched at node {node.id}")
            raise NoBranchMatched(node.id, state)

    else:
        out = idx.outgoing.get(node.id, [])
        if not out:
            return replace(state, awaiting_reply=False, terminated=True)
        target_id = out[0].target

    target = idx.nodes.get(target_id)
    if target is None:
        raise UnknownNodeError(target_id)
    logger.debug(f"Transition {node.id} -> {target.id}")
    return _land(state, target, idx)


def _auto_chain(
    idx: GraphIndex,
    state: SessionState,
    matcher: Matcher,
    max_auto_steps: int,
) -> SessionState:
    # keep moving through nodes that do not wait for the user
    steps = 0
    while not state.terminated and not state.awaiting_reply:
        if steps >= max_auto_steps:
            raise AutoChainLimitExceeded(state.current_node_id, max_auto_steps)
        node = _current(idx, state)
        state = _step(idx, state, node, Continue(), matcher)
        steps += 1
    return state
