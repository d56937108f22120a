""" Exception types raised by the workflow engine. """
from typing import Any, List, Optional


class WorkflowError(Exception):
    """ Base class for every workflow engine error. """


class WorkflowSchemaError(WorkflowError, ValueError):
    """ Raised when raw data cannot be parsed into a WorkflowDocument. """


class WorkflowValidationError(WorkflowError, ValueError):
    """ Structural defect: the document is not executable. """

    def __init__(self, issues: List[Any]):
        self.issues = list(issues)
        lines = "\n".join(f"  - [{issue.kind.value}] {issue.message}" for issue in self.issues)
        super().__init__(f"Workflow validation failed:\n{lines}")


class UnknownNodeError(WorkflowError, KeyError):
    def __init__(self, node_id: Optional[str]):
        self.node_id = node_id
        super().__init__(f"Unknown node: {node_id}")

    def __str__(self) -> str:
        return self.args[0]


class SessionContractViolation(WorkflowError):
    """ The caller sent something the current session cannot accept. """


class SignalMismatch(SessionContractViolation):
    def __init__(self, node_id: str, expected: str, received: str):
        self.node_id = node_id
        self.expected = expected
        self.received = received
        super().__init__(f"Node {node_id} expects {expected}, received {received}")


class SessionAlreadyTerminated(SessionContractViolation):
    def __init__(self, node_id: Optional[str]):
        self.node_id = node_id
        super().__init__(f"Session already terminated at node {node_id}")


class DocumentVersionMismatch(SessionContractViolation):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Session pinned to document {expected[:12]}, got {actual[:12]}")


class NoBranchMatched(WorkflowError):
    """
    No branch condition matched the signal. Recoverable: ``state`` is the
    session parked at the branch node, ready for another attempt.
    """

    def __init__(self, node_id: str, state: Any):
        self.node_id = node_id
        self.state = state
        super().__init__(f"No branch matched at node {node_id}")


class AutoChainLimitExceeded(WorkflowError):
    def __init__(self, node_id: str, limit: int):
        self.node_id = node_id
        self.limit = limit
        super().__init__(f"Auto-chain exceeded {limit} steps (last node: {node_id})")


class SessionNotFound(WorkflowError, KeyError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")

    def __str__(self) -> str:
        return self.args[0]
