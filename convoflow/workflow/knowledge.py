""" Merge node-level knowledge with the agent-wide collections. """
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple, TypeVar

from .errors import UnknownNodeError
from .schema import (
    WorkflowAction,
    WorkflowDocument,
    WorkflowFaq,
    WorkflowObjection,
    WorkflowProduct,
    WorkflowService,
)

T = TypeVar("T")


@dataclass
class Knowledge:
    actions: List[WorkflowAction] = field(default_factory=list)
    faqs: List[WorkflowFaq] = field(default_factory=list)
    objections: List[WorkflowObjection] = field(default_factory=list)
    products: List[WorkflowProduct] = field(default_factory=list)
    services: List[WorkflowService] = field(default_factory=list)

    def copy(self) -> "Knowledge":
        """Fresh lists of fresh records; nothing is shared with the original."""
        return Knowledge(
            actions=[item.model_copy() for item in self.actions],
            faqs=[item.model_copy() for item in self.faqs],
            objections=[item.model_copy() for item in self.objections],
            products=[item.model_copy(deep=True) for item in self.products],
            services=[item.model_copy(deep=True) for item in self.services],
        )

    def to_dict(self) -> Dict[str, list]:
        return {
            name: [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]
            for name, items in (
                ("actions", self.actions),
                ("faqs", self.faqs),
                ("objections", self.objections),
                ("products", self.products),
                ("services", self.services),
            )
        }


def merge_by_identity(global_items: Sequence[T], node_items: Sequence[T]) -> List[T]:
    """
    Globals first, then node entries. A node entry sharing an id with an
    earlier entry replaces it at that entry's position.
    """
    merged: List[T] = []
    position: Dict[str, int] = {}
    for item in list(global_items) + list(node_items):
        slot = position.get(item.id)
        if slot is None:
            position[item.id] = len(merged)
            merged.append(item)
        else:
            merged[slot] = item
    return merged


def resolve(doc: WorkflowDocument, node_id: str) -> Knowledge:
    """Knowledge visible at ``node_id``."""
    node = doc.node_by_id(node_id)
    if node is None:
        raise UnknownNodeError(node_id)
    return Knowledge(
        actions=merge_by_identity(doc.global_actions, node.actions),
        faqs=merge_by_identity(doc.global_faqs, node.faqs),
        objections=merge_by_identity(doc.global_objections, node.objections),
        products=merge_by_identity([], node.products),
        services=merge_by_identity([], node.services),
    )


class KnowledgeResolver:
    """
    Memoizes ``resolve`` per (document version, node id).

    Callers get their own copy of the cached result, so sessions resting on
    the same node never see each other's changes.
    """

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._cache: Dict[Tuple[str, str], Knowledge] = {}

    def resolve(self, doc: WorkflowDocument, node_id: str, version: str = None) -> Knowledge:
        key = (version or doc.version, node_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached.copy()
        knowledge = resolve(doc, node_id)
        if len(self._cache) >= self.max_entries:
            self._cache.clear()
        self._cache[key] = knowledge
        return knowledge.copy()

    def clear(self) -> None:
        self._cache.clear()
