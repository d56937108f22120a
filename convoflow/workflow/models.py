""" Runtime value types for walking a workflow document. """

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple, Union

from .knowledge import Knowledge


@dataclass(frozen=True)
class UserReply:
    text: str
    kind: str = field(default="reply", init=False)


@dataclass(frozen=True)
class Continue:
    kind: str = field(default="continue", init=False)


Signal = Union[UserReply, Continue]


@dataclass(frozen=True)
class SessionState:
    """
    Cursor of one conversation. Immutable: every engine call returns a new one.
    ``history`` lists the visited node ids in order, entry first.
    """
    document_version: str
    current_node_id: Optional[str]
    awaiting_reply: bool = False
    terminated: bool = False
    history: Tuple[str, ...] = ()

    def moved_to(self, node_id: str, *, awaiting_reply: bool, terminated: bool) -> "SessionState":
        return replace(
            self,
            current_node_id=node_id,
            awaiting_reply=awaiting_reply,
            terminated=terminated,
            history=self.history + (node_id,),
        )


@dataclass
class Emission:
    """ What the caller needs to build the next outward message. """
    node_id: Optional[str]
    instructions: str = ""
    instructions_detailed: str = ""
    knowledge: Knowledge = field(default_factory=Knowledge)
    awaiting_reply: bool = False
    terminated: bool = False
    visited: List[str] = field(default_factory=list)
