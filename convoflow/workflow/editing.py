"""
Editing helpers for author-time changes to a workflow document.

Each helper returns a new document and leaves its input untouched, so a
candidate can be built step by step and validated before it is saved.
"""
import re
from typing import Iterable, List, Optional, Set, Union

from .errors import UnknownNodeError
from .schema import (
    Branch,
    NodeVariant,
    WorkflowAction,
    WorkflowDocument,
    WorkflowEdge,
    WorkflowFaq,
    WorkflowNode,
    WorkflowObjection,
    WorkflowProduct,
    WorkflowService,
)

_NODE_ID = re.compile(r"node_(\d+)")


def _replace(doc: WorkflowDocument, **changes) -> WorkflowDocument:
    fields = {name: getattr(doc, name) for name in WorkflowDocument.model_fields}
    fields.update(changes)
    return WorkflowDocument(**fields)


def _require(doc: WorkflowDocument, node_id: str) -> WorkflowNode:
    node = doc.node_by_id(node_id)
    if node is None:
        raise UnknownNodeError(node_id)
    return node


def next_node_id(doc: WorkflowDocument) -> str:
    """``node_<n>`` one past the highest numbered node id."""
    numbers = [int(m.group(1)) for m in (_NODE_ID.fullmatch(n.id) for n in doc.nodes) if m]
    return f"node_{max(numbers, default=0) + 1}"


def new_node(
    node_id: str,
    label: str = "",
    variant: NodeVariant = NodeVariant.DEFAULT,
    **fields,
) -> WorkflowNode:
    """A fresh node; default and end steps wait for the user unless told otherwise."""
    variant = NodeVariant(variant)
    fields.setdefault("require_user_response", variant in (NodeVariant.DEFAULT, NodeVariant.END))
    return WorkflowNode(id=node_id, label=label or node_id, variant=variant, **fields)


def add_node(
    doc: WorkflowDocument,
    node: WorkflowNode,
    parent_id: Optional[str] = None,
    source_handle: Optional[str] = None,
) -> WorkflowDocument:
    """Append ``node``; with ``parent_id`` an edge parent -> node is added too."""
    edges = list(doc.edges)
    if parent_id is not None:
        _require(doc, parent_id)
        edges.append(_edge(parent_id, node.id, source_handle))
    return _replace(doc, nodes=list(doc.nodes) + [node], edges=edges)


def connect(
    doc: WorkflowDocument,
    source: str,
    target: str,
    source_handle: Optional[str] = None,
) -> WorkflowDocument:
    _require(doc, source)
    _require(doc, target)
    return _replace(doc, edges=list(doc.edges) + [_edge(source, target, source_handle)])


def delete_node(doc: WorkflowDocument, node_id: str) -> WorkflowDocument:
    """Remove ``node_id`` and every node downstream of it, with their edges."""
    _require(doc, node_id)
    doomed: Set[str] = set()
    stack = [node_id]
    while stack:
        current = stack.pop()
        if current in doomed:
            continue
        doomed.add(current)
        stack.extend(e.target for e in doc.edges if e.source == current)

    nodes = [n for n in doc.nodes if n.id not in doomed]
    edges = [e for e in doc.edges if e.source not in doomed and e.target not in doomed]
    return _replace(doc, nodes=nodes, edges=edges)


def update_node(doc: WorkflowDocument, node_id: str, **changes) -> WorkflowDocument:
    """Replace fields of one node (snake_case field names)."""
    node = _require(doc, node_id)
    updated = WorkflowNode(**{**{name: getattr(node, name) for name in WorkflowNode.model_fields}, **changes})
    nodes = [updated if n.id == node_id else n for n in doc.nodes]
    return _replace(doc, nodes=nodes)


def add_branch(doc: WorkflowDocument, node_id: str, branch: Branch, target: str) -> WorkflowDocument:
    """Add ``branch`` to a branch node and wire it to ``target``."""
    node = _require(doc, node_id)
    doc = update_node(doc, node_id, branches=list(node.branches or []) + [branch])
    return connect(doc, node_id, target, source_handle=branch.id)


def add_faq_to_node(doc: WorkflowDocument, node_id: str, faq: WorkflowFaq) -> WorkflowDocument:
    return _extend(doc, node_id, "faqs", [faq])


def add_objection_to_node(doc: WorkflowDocument, node_id: str, objection: WorkflowObjection) -> WorkflowDocument:
    return _extend(doc, node_id, "objections", [objection])


def add_actions_to_node(doc: WorkflowDocument, node_id: str, actions: Iterable[WorkflowAction]) -> WorkflowDocument:
    return _extend(doc, node_id, "actions", list(actions))


def add_products_to_node(
    doc: WorkflowDocument,
    node_id: str,
    products: Union[WorkflowProduct, List[WorkflowProduct]],
) -> WorkflowDocument:
    items = products if isinstance(products, list) else [products]
    return _extend(doc, node_id, "products", items)


def add_services_to_node(
    doc: WorkflowDocument,
    node_id: str,
    services: Union[WorkflowService, List[WorkflowService]],
) -> WorkflowDocument:
    items = services if isinstance(services, list) else [services]
    return _extend(doc, node_id, "services", items)


def _extend(doc: WorkflowDocument, node_id: str, attr: str, items: list) -> WorkflowDocument:
    node = _require(doc, node_id)
    return update_node(doc, node_id, **{attr: list(getattr(node, attr)) + items})


def _edge(source: str, target: str, source_handle: Optional[str]) -> WorkflowEdge:
    handle = f"-{source_handle}" if source_handle else ""
    return WorkflowEdge(id=f"e{source}{handle}-{target}", source=source, target=target, source_handle=source_handle)
