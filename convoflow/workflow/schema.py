""" Wire models for the agent workflow document. """
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class NodeVariant(str, Enum):
    DEFAULT = "default"
    END = "end"
    JUMP = "jump"
    BRANCH = "branch"


class ActionType(str, Enum):
    CUSTOM = "CUSTOM"
    AGENT = "AGENT"
    MCP = "MCP"
    DATABASE = "DATABASE"


class _WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python; editor styling keys are dropped
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=False,
    )


class WorkflowAction(_WireModel):
    id: str
    name: str
    description: Optional[str] = None
    order: Optional[float] = None
    api_url: Optional[str] = None
    action_type: Optional[ActionType] = None


class WorkflowFaq(_WireModel):
    id: str
    question: str
    answer: str


class WorkflowObjection(_WireModel):
    id: str
    case: str
    instructions: str


class ProductCategory(_WireModel):
    name: str


class WorkflowProduct(_WireModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    categories: Optional[List[ProductCategory]] = None


class WorkflowService(_WireModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    categories: Optional[List[ProductCategory]] = None


class Branch(_WireModel):
    id: str
    label: str = ""
    condition: Optional[str] = None


class WorkflowNode(_WireModel):
    """
    A single step on the canvas. ``variant`` decides which of the
    variant-specific fields (``target_node_id``, ``branches``) are meaningful.
    """
    id: str
    variant: NodeVariant = NodeVariant.DEFAULT
    label: str = ""
    require_user_response: bool = False
    instructions: str = ""
    instructions_detailed: str = ""
    has_instructions: bool = False
    target_node_id: Optional[str] = None
    branches: Optional[List[Branch]] = None
    actions: List[WorkflowAction] = Field(default_factory=list)
    faqs: List[WorkflowFaq] = Field(default_factory=list)
    objections: List[WorkflowObjection] = Field(default_factory=list)
    products: List[WorkflowProduct] = Field(default_factory=list)
    services: List[WorkflowService] = Field(default_factory=list)

    # editor metadata, opaque to the engine
    type: str = "cardStep"
    position: Dict[str, float] = Field(default_factory=lambda: {"x": 0, "y": 0})

    @model_validator(mode="before")
    @classmethod
    def _flatten_editor_shape(cls, raw: Any) -> Any:
        # the editor nests everything but id/type/position under "data"
        if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
            flat = {k: v for k, v in raw.items() if k != "data"}
            for key, value in raw["data"].items():
                flat.setdefault(key, value)
            return flat
        return raw

    @property
    def is_suspension_point(self) -> bool:
        return self.require_user_response


class WorkflowEdge(_WireModel):
    id: str = Field(default_factory=lambda: f"edge_{uuid.uuid4().hex[:8]}")
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    # editor metadata
    type: Optional[str] = None
    animated: bool = True
    label: Optional[str] = None
    style: Optional[Dict[str, Any]] = None
    label_style: Optional[Dict[str, Any]] = None


@dataclass
class GraphIndex:
    """ id -> node map plus adjacency, built in one pass over the document. """
    nodes: Dict[str, WorkflowNode] = field(default_factory=dict)
    outgoing: Dict[str, List[WorkflowEdge]] = field(default_factory=dict)
    incoming: Dict[str, List[WorkflowEdge]] = field(default_factory=dict)
    duplicates: List[str] = field(default_factory=list)


class WorkflowDocument(_WireModel):
    name: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None

    global_actions: List[WorkflowAction] = Field(default_factory=list)
    global_faqs: List[WorkflowFaq] = Field(default_factory=list)
    global_objections: List[WorkflowObjection] = Field(default_factory=list)

    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    position_x: float = 250
    position_y: float = 25

    @model_validator(mode="before")
    @classmethod
    def _accept_entry_position(cls, raw: Any) -> Any:
        if isinstance(raw, dict) and ("entryPositionX" in raw or "entryPositionY" in raw):
            raw = dict(raw)
            if "entryPositionX" in raw:
                raw.setdefault("positionX", raw.pop("entryPositionX"))
            if "entryPositionY" in raw:
                raw.setdefault("positionY", raw.pop("entryPositionY"))
        return raw

    # -- structural accessors --

    def index(self) -> GraphIndex:
        idx = GraphIndex()
        for node in self.nodes:
            if node.id in idx.nodes:
                idx.duplicates.append(node.id)
                continue
            idx.nodes[node.id] = node
            idx.outgoing[node.id] = []
            idx.incoming[node.id] = []
        for edge in self.edges:
            idx.outgoing.setdefault(edge.source, []).append(edge)
            idx.incoming.setdefault(edge.target, []).append(edge)
        return idx

    def node_by_id(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def edges_from(self, node_id: str) -> List[WorkflowEdge]:
        return [e for e in self.edges if e.source == node_id]

    def edges_to(self, node_id: str) -> List[WorkflowEdge]:
        return [e for e in self.edges if e.target == node_id]

    def entry_candidates(self) -> List[WorkflowNode]:
        """Nodes with no incoming edge and no jump pointing at them."""
        referenced = {e.target for e in self.edges}
        referenced.update(
            n.target_node_id for n in self.nodes
            if n.variant == NodeVariant.JUMP and n.target_node_id
        )
        return [n for n in self.nodes if n.id not in referenced]

    def entry_node(self) -> Optional[WorkflowNode]:
        """The unique entry node, or None when missing or ambiguous."""
        candidates = self.entry_candidates()
        if len(candidates) != 1:
            return None
        return candidates[0]

    @property
    def is_empty(self) -> bool:
        return not self.nodes and not self.edges

    @property
    def version(self) -> str:
        """Content hash of the canonical JSON form; stable across processes."""
        payload = json.dumps(
            self.model_dump(mode="json", by_alias=True),
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def snapshot(self) -> "WorkflowSnapshot":
        """Pin this document with its version stamp and id index, computed once."""
        return WorkflowSnapshot(document=self, version=self.version, index=self.index())


@dataclass(frozen=True)
class WorkflowSnapshot:
    """
    A document as a running session sees it. The version hash and the id
    index are computed when the session loads the document, not per turn.
    The document must not be mutated while a snapshot of it is in use.
    """
    document: WorkflowDocument
    version: str
    index: GraphIndex

    def node_by_id(self, node_id: str) -> Optional[WorkflowNode]:
        return self.index.nodes.get(node_id)

    def edges_from(self, node_id: str) -> List[WorkflowEdge]:
        return list(self.index.outgoing.get(node_id, []))


def empty_document(name: Optional[str] = None) -> WorkflowDocument:
    """The canonical document of a freshly provisioned agent."""
    return WorkflowDocument(name=name)
