"""Example: save the refund workflow for an agent and walk one conversation through it.

Shows auto-chaining (greeting -> order question), branch matching, a
recoverable no-match, and the jump back to the order question.
"""
from pathlib import Path

from convoflow.config import EngineSettings, configure_logging
from convoflow.conversation import ConversationRuntime
from convoflow.workflow.compiler import load_workflow
from convoflow.workflow.errors import NoBranchMatched
from convoflow.workflow.models import UserReply
from convoflow.workflow.store import InMemoryWorkflowStore


def main():
    settings = EngineSettings.load()
    configure_logging(settings)

    workflow = load_workflow(Path(__file__).with_name("workflows").joinpath("refund_agent.yaml").read_text())
    runtime = ConversationRuntime(InMemoryWorkflowStore(), settings)

    result = runtime.save_workflow("agent-42", workflow)
    print("Saved:", result.ok)

    view = runtime.start_session("agent-42")
    print("Start at:", view.node_id, "-", view.instructions)

    view = runtime.advance_session(view.session_id, UserReply("Order #1234"))
    print("Now at:", view.node_id, "-", view.instructions)

    try:
        runtime.advance_session(view.session_id, UserReply("not sure yet"))
    except NoBranchMatched as exc:
        print("No branch matched at", exc.node_id, "- asking again")

    view = runtime.advance_session(view.session_id, UserReply("I'd like to swap it"))
    print("After exchange we are back at:", view.node_id)

    view = runtime.advance_session(view.session_id, UserReply("Order #1234"))
    view = runtime.advance_session(view.session_id, UserReply("Actually a refund please"))
    print("Final node:", view.node_id, "terminated:", view.terminated)
    for faq in view.knowledge.faqs:
        print("  FAQ:", faq.question, "->", faq.answer)


if __name__ == "__main__":
    main()
