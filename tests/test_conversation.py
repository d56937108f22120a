"""Tests for the conversation runtime (sessions over a workflow store)."""

import pytest
from convoflow.config import EngineSettings
from convoflow.conversation import ConversationRuntime
from convoflow.workflow.compiler import load_workflow
from convoflow.workflow.errors import (
    AutoChainLimitExceeded,
    NoBranchMatched,
    SessionAlreadyTerminated,
    SessionNotFound,
    SignalMismatch,
    WorkflowValidationError,
)
from convoflow.workflow.models import Continue, UserReply
from convoflow.workflow.store import InMemoryWorkflowStore, JsonFileWorkflowStore
from convoflow.workflow.validator import IssueKind


YES_NO = """
name: yes_no
globalFaqs:
  - { id: f1, question: "Who are you?", answer: "A bot" }
nodes:
  - { id: Entry, instructions: "Welcome" }
  - id: A
    variant: branch
    requireUserResponse: true
    instructions: "Do you agree?"
    faqs:
      - { id: f1, question: "Who are you?", answer: "The agreement bot" }
    branches:
      - { id: "yes", label: "Yes", condition: "y" }
      - { id: "no", label: "No", condition: "n" }
  - { id: End1, variant: end, instructions: "Great" }
  - { id: End2, variant: end, instructions: "Too bad" }
edges:
  - { id: e0, source: Entry, target: A }
  - { id: e1, source: A, target: End1, sourceHandle: "yes" }
  - { id: e2, source: A, target: End2, sourceHandle: "no" }
"""


@pytest.fixture
def runtime():
    rt = ConversationRuntime(InMemoryWorkflowStore())
    assert rt.save_workflow("agent-1", load_workflow(YES_NO)).ok
    return rt


def test_start_session_lands_on_branch(runtime):
    """Test the example scenario: start auto-chains from Entry to A and waits."""
    view = runtime.start_session("agent-1")

    assert view.node_id == "A"
    assert view.instructions == "Do you agree?"
    assert view.awaiting_reply is True
    assert view.terminated is False
    assert [f.answer for f in view.knowledge.faqs] == ["The agreement bot"]


def test_advance_session_to_end(runtime):
    """Test the example scenario: replying 'y' ends the conversation at End1."""
    view = runtime.start_session("agent-1")

    view = runtime.advance_session(view.session_id, UserReply("y"))

    assert view.node_id == "End1"
    assert view.terminated is True
    assert view.awaiting_reply is False
    assert view.instructions == "Great"


def test_unmatched_reply_keeps_session_at_branch(runtime):
    """Test the example scenario: 'maybe' matches nothing and the cursor stays on A."""
    view = runtime.start_session("agent-1")

    with pytest.raises(NoBranchMatched) as excinfo:
        runtime.advance_session(view.session_id, UserReply("maybe"))

    assert excinfo.value.session_id == view.session_id
    assert runtime.session_state(view.session_id).current_node_id == "A"
    assert runtime.advance_session(view.session_id, UserReply("n")).node_id == "End2"


def test_terminated_session_cannot_advance(runtime):
    """Test that advancing after the end is a contract violation."""
    view = runtime.start_session("agent-1")
    runtime.advance_session(view.session_id, UserReply("y"))

    with pytest.raises(SessionAlreadyTerminated):
        runtime.advance_session(view.session_id, Continue())


def test_wrong_signal_is_reported(runtime):
    """Test that Continue at a suspension point is refused and the session is unchanged."""
    view = runtime.start_session("agent-1")

    with pytest.raises(SignalMismatch):
        runtime.advance_session(view.session_id, Continue())

    assert runtime.session_state(view.session_id).current_node_id == "A"


def test_unknown_session(runtime):
    """Test that an unknown session id raises SessionNotFound."""
    with pytest.raises(SessionNotFound):
        runtime.advance_session("nope", UserReply("y"))


def test_sessions_are_independent(runtime):
    """Test that two sessions of the same agent advance separately."""
    first = runtime.start_session("agent-1")
    second = runtime.start_session("agent-1")

    runtime.advance_session(first.session_id, UserReply("y"))

    assert first.session_id != second.session_id
    assert runtime.session_state(second.session_id).current_node_id == "A"


def test_session_is_pinned_to_starting_document(runtime):
    """Test that a save during a conversation does not affect the running session."""
    view = runtime.start_session("agent-1")
    changed = load_workflow(YES_NO.replace('condition: "y"', 'condition: "si"'))
    assert runtime.save_workflow("agent-1", changed).ok

    old = runtime.advance_session(view.session_id, UserReply("y"))
    fresh = runtime.start_session("agent-1")

    assert old.node_id == "End1"
    assert old.document_version == view.document_version
    assert fresh.document_version == changed.version
    assert fresh.document_version != view.document_version


def test_save_workflow_rejects_invalid_document(runtime):
    """Test that invalid saves return issues and leave the stored document alone."""
    broken = load_workflow("""
nodes:
  - { id: a }
  - { id: b }
edges: []
""", validate=False)

    result = runtime.save_workflow("agent-1", broken)

    assert not result.ok
    assert IssueKind.AMBIGUOUS_ENTRY in result.kinds()
    assert runtime.load_workflow("agent-1").name == "yes_no"


def test_start_session_without_saved_workflow():
    """Test that an agent with nothing saved gets an immediately terminated session."""
    runtime = ConversationRuntime(InMemoryWorkflowStore())

    view = runtime.start_session("fresh-agent")

    assert view.node_id is None
    assert view.terminated is True
    assert view.awaiting_reply is False
    assert view.instructions == ""
    with pytest.raises(SessionAlreadyTerminated):
        runtime.advance_session(view.session_id, Continue())


def test_start_session_refuses_invalid_stored_document():
    """Test that a store holding a bad document cannot start a session."""
    class UncheckedStore(InMemoryWorkflowStore):
        def save(self, agent_id, workflow):
            self._write(agent_id, workflow)
            return workflow.version

    store = UncheckedStore()
    store.save("agent-x", load_workflow("nodes: [{id: a}, {id: b}]\nedges: []", validate=False))

    with pytest.raises(WorkflowValidationError):
        ConversationRuntime(store).start_session("agent-x")


def test_auto_chain_limit_from_settings():
    """Test that the configured auto-chain limit is applied."""
    runtime = ConversationRuntime(InMemoryWorkflowStore(), EngineSettings(max_auto_steps=5))
    runtime.save_workflow("loop", load_workflow("""
nodes:
  - { id: entry }
  - { id: a }
  - { id: hop, variant: jump, targetNodeId: a }
edges:
  - { id: e0, source: entry, target: a }
  - { id: e1, source: a, target: hop }
"""))

    with pytest.raises(AutoChainLimitExceeded) as excinfo:
        runtime.start_session("loop")

    assert excinfo.value.limit == 5


def test_end_session(runtime):
    """Test dropping a session."""
    view = runtime.start_session("agent-1")

    runtime.end_session(view.session_id)

    assert view.session_id not in runtime.active_sessions()
    with pytest.raises(SessionNotFound):
        runtime.end_session(view.session_id)


def test_view_to_dict(runtime):
    """Test the camelCase wire shape of a session view."""
    payload = runtime.start_session("agent-1").to_dict()

    assert payload["nodeId"] == "A"
    assert payload["awaitingReply"] is True
    assert payload["terminated"] is False
    assert payload["knowledge"]["faqs"][0]["answer"] == "The agreement bot"


def test_execution_log_records_turns(runtime):
    """Test that starts and turns are recorded in the execution log."""
    view = runtime.start_session("agent-1")
    runtime.advance_session(view.session_id, UserReply("y"))

    messages = [entry["message"] for entry in runtime.execution_log]

    assert any(m.startswith("[START]") for m in messages)
    assert any("A -> End1 (terminated)" in m for m in messages)


def test_from_settings_picks_store(tmp_path):
    """Test that store_dir selects the JSON file store."""
    on_disk = ConversationRuntime.from_settings(EngineSettings(store_dir=str(tmp_path)))
    in_memory = ConversationRuntime.from_settings(EngineSettings())

    assert isinstance(on_disk.store, JsonFileWorkflowStore)
    assert isinstance(in_memory.store, InMemoryWorkflowStore)

    on_disk.save_workflow("agent-1", load_workflow(YES_NO))
    assert (tmp_path / "agent-1.json").exists()


def test_sessions_do_not_share_knowledge(runtime):
    """Test that changing one session's knowledge leaves other sessions untouched."""
    first = runtime.start_session("agent-1")
    first.knowledge.faqs.append(first.knowledge.faqs[0].model_copy(update={"id": "mine"}))

    second = runtime.start_session("agent-1")

    assert [f.id for f in second.knowledge.faqs] == ["f1"]


ASK_THEN_ROUTE = """
nodes:
  - { id: X, requireUserResponse: true, instructions: "Anything else?" }
  - id: B
    variant: branch
    branches:
      - { id: b1, condition: "1" }
      - { id: b2, condition: "2" }
  - { id: T1, variant: end }
  - { id: T2, variant: end }
edges:
  - { id: e0, source: X, target: B }
  - { id: e1, source: B, target: T1, sourceHandle: b1 }
  - { id: e2, source: B, target: T2, sourceHandle: b2 }
"""


def test_unmatched_downstream_branch_parks_session_there():
    """Test that a branch reached by auto-chaining keeps the session parked at that branch."""
    runtime = ConversationRuntime(InMemoryWorkflowStore())
    runtime.save_workflow("router", load_workflow(ASK_THEN_ROUTE))
    view = runtime.start_session("router")
    assert view.node_id == "X"

    with pytest.raises(NoBranchMatched) as excinfo:
        runtime.advance_session(view.session_id, UserReply("hello"))

    parked = runtime.session_state(view.session_id)
    assert excinfo.value.node_id == "B"
    assert excinfo.value.session_id == view.session_id
    assert parked == excinfo.value.state
    assert parked.current_node_id == "B"
    assert parked.awaiting_reply is False
    with pytest.raises(SignalMismatch):
        runtime.advance_session(view.session_id, UserReply("hello"))


def test_execution_log_is_bounded():
    """Test that the execution log keeps only the most recent entries."""
    runtime = ConversationRuntime(InMemoryWorkflowStore(), EngineSettings(execution_log_limit=3))
    runtime.save_workflow("agent-1", load_workflow(YES_NO))

    for _ in range(4):
        view = runtime.start_session("agent-1")

    messages = [entry["message"] for entry in runtime.execution_log]
    assert len(messages) == 3
    assert messages[-1].startswith(f"[START] Session {view.session_id}")
