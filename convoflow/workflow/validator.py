""" Static checks that prove a workflow document is executable. """
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Set

from .errors import WorkflowValidationError
from .schema import GraphIndex, NodeVariant, WorkflowDocument


class IssueKind(str, Enum):
    DUPLICATE_NODE_ID = "duplicate_node_id"
    DANGLING_EDGE = "dangling_edge"
    MISSING_ENTRY = "missing_entry"
    AMBIGUOUS_ENTRY = "ambiguous_entry"
    END_HAS_OUTGOING = "end_has_outgoing"
    INVALID_JUMP = "invalid_jump"
    INVALID_BRANCH = "invalid_branch"
    DEFAULT_FANOUT = "default_fanout"
    UNREACHABLE_NODE = "unreachable_node"


@dataclass
class ValidationIssue:
    kind: IssueKind
    message: str
    node_ids: List[str] = field(default_factory=list)
    edge_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "nodeIds": list(self.node_ids),
            "edgeIds": list(self.edge_ids),
        }


@dataclass
class ValidationResult:
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def kinds(self) -> Set[IssueKind]:
        return {issue.kind for issue in self.issues}


def validate(doc: WorkflowDocument) -> ValidationResult:
    """
    Check every structural invariant and collect all issues.
    Total on any input: cycles are legal and never stop the walk.
    """
    issues: List[ValidationIssue] = []
    idx = doc.index()

    for node_id in idx.duplicates:
        issues.append(ValidationIssue(
            IssueKind.DUPLICATE_NODE_ID,
            f"Duplicate node id: {node_id}",
            node_ids=[node_id],
        ))

    for edge in doc.edges:
        missing = [end for end in (edge.source, edge.target) if end not in idx.nodes]
        if missing:
            issues.append(ValidationIssue(
                IssueKind.DANGLING_EDGE,
                f"Edge {edge.id} references unknown node: {edge.source} -> {edge.target}",
                node_ids=missing,
                edge_ids=[edge.id],
            ))

    for node in idx.nodes.values():
        issues.extend(_check_shape(node.id, idx))

    if idx.nodes:
        issues.extend(_check_entry_and_reachability(doc, idx))

    return ValidationResult(issues)


def ensure_valid(doc: WorkflowDocument) -> WorkflowDocument:
    """Raise WorkflowValidationError unless ``doc`` passes validation."""
    result = validate(doc)
    if not result.ok:
        raise WorkflowValidationError(result.issues)
    return doc


def _check_shape(node_id: str, idx: GraphIndex) -> List[ValidationIssue]:
    node = idx.nodes[node_id]
    out = idx.outgoing.get(node_id, [])
    issues: List[ValidationIssue] = []

    if node.variant == NodeVariant.END:
        if out:
            issues.append(ValidationIssue(
                IssueKind.END_HAS_OUTGOING,
                f"End node {node_id} has {len(out)} outgoing edge(s)",
                node_ids=[node_id],
                edge_ids=[e.id for e in out],
            ))

    elif node.variant == NodeVariant.JUMP:
        if not node.target_node_id:
            issues.append(ValidationIssue(
                IssueKind.INVALID_JUMP,
                f"Jump node {node_id} has no target",
                node_ids=[node_id],
            ))
        elif node.target_node_id not in idx.nodes:
            issues.append(ValidationIssue(
                IssueKind.INVALID_JUMP,
                f"Jump node {node_id} targets unknown node {node.target_node_id}",
                node_ids=[node_id],
            ))
        if out:
            issues.append(ValidationIssue(
                IssueKind.INVALID_JUMP,
                f"Jump node {node_id} must not have outgoing edges",
                node_ids=[node_id],
                edge_ids=[e.id for e in out],
            ))

    elif node.variant == NodeVariant.BRANCH:
        issues.extend(_check_branch(node_id, idx))

    else:
        if len(out) > 1:
            issues.append(ValidationIssue(
                IssueKind.DEFAULT_FANOUT,
                f"Node {node_id} has {len(out)} outgoing edges (at most one allowed)",
                node_ids=[node_id],
                edge_ids=[e.id for e in out],
            ))

    return issues


def _check_branch(node_id: str, idx: GraphIndex) -> List[ValidationIssue]:
    node = idx.nodes[node_id]
    branches = node.branches or []
    out = idx.outgoing.get(node_id, [])
    issues: List[ValidationIssue] = []

    def _issue(message, edge_ids=()):
        issues.append(ValidationIssue(
            IssueKind.INVALID_BRANCH, message, node_ids=[node_id], edge_ids=list(edge_ids),
        ))

    if len(branches) < 2:
        _issue(f"Branch node {node_id} needs at least 2 branches, has {len(branches)}")

    branch_ids = [b.id for b in branches]
    seen: Set[str] = set()
    for branch_id in branch_ids:
        if branch_id in seen:
            _issue(f"Branch node {node_id} repeats branch id {branch_id}")
        seen.add(branch_id)

    by_handle: Dict[str, List[str]] = {}
    for edge in out:
        by_handle.setdefault(edge.source_handle, []).append(edge.id)

    for branch_id in seen:
        edge_ids = by_handle.get(branch_id, [])
        if not edge_ids:
            _issue(f"Branch {branch_id} of node {node_id} has no outgoing edge")
        elif len(edge_ids) > 1:
            _issue(f"Branch {branch_id} of node {node_id} has {len(edge_ids)} edges", edge_ids)

    for handle, edge_ids in by_handle.items():
        if handle not in seen:
            _issue(f"Edge(s) out of {node_id} use unknown branch handle {handle!r}", edge_ids)

    return issues


def _check_entry_and_reachability(doc: WorkflowDocument, idx: GraphIndex) -> List[ValidationIssue]:
    candidates = [n.id for n in doc.entry_candidates() if n.id in idx.nodes]
    # duplicates share an id with an indexed node; count each id once
    candidates = list(dict.fromkeys(candidates))

    if not candidates:
        return [ValidationIssue(
            IssueKind.MISSING_ENTRY,
            "No entry node: every node has an incoming edge",
        )]
    if len(candidates) > 1:
        return [ValidationIssue(
            IssueKind.AMBIGUOUS_ENTRY,
            f"Ambiguous entry: {len(candidates)} nodes have no incoming edge ({', '.join(candidates)})",
            node_ids=candidates,
        )]

    # BFS over edges and jump targets
    entry = candidates[0]
    visited = {entry}
    queue = deque([entry])
    while queue:
        current = queue.popleft()
        successors = [e.target for e in idx.outgoing.get(current, [])]
        node = idx.nodes[current]
        if node.variant == NodeVariant.JUMP and node.target_node_id:
            successors.append(node.target_node_id)
        for successor in successors:
            if successor in idx.nodes and successor not in visited:
                visited.add(successor)
                queue.append(successor)

    return [
        ValidationIssue(
            IssueKind.UNREACHABLE_NODE,
            f"Node {node_id} is not reachable from entry node {entry}",
            node_ids=[node_id],
        )
        for node_id in idx.nodes
        if node_id not in visited
    ]
