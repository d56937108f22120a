"""Tests for workflow loading (YAML/JSON parsing and schema mapping)."""

import json

import pytest
from convoflow.workflow.compiler import dump_workflow, load_workflow, parse_workflow
from convoflow.workflow.errors import WorkflowSchemaError, WorkflowValidationError
from convoflow.workflow.schema import ActionType, NodeVariant


def test_load_workflow_from_valid_yaml():
    """Test loading a valid workflow from YAML."""
    yaml_text = """
name: support
description: A support agent
instructions: Be polite.
globalFaqs:
  - { id: f1, question: "Hours?", answer: "9 to 5" }
globalActions:
  - { id: a1, name: Lookup, actionType: DATABASE, apiUrl: "https://example.com" }

nodes:
  - id: start
    variant: default
    label: Start
    instructions: Say hello
  - id: done
    variant: end
    label: Done

edges:
  - { id: e1, source: start, target: done }
"""

    workflow = load_workflow(yaml_text)

    assert workflow.name == "support"
    assert workflow.instructions == "Be polite."
    assert len(workflow.nodes) == 2
    assert workflow.nodes[0].variant == NodeVariant.DEFAULT
    assert workflow.nodes[1].variant == NodeVariant.END
    assert workflow.global_faqs[0].answer == "9 to 5"
    assert workflow.global_actions[0].action_type == ActionType.DATABASE
    assert workflow.global_actions[0].api_url == "https://example.com"
    assert workflow.edges[0].source == "start"


def test_load_workflow_accepts_editor_nested_shape():
    """Test that the editor shape (fields under 'data') is flattened."""
    raw = {
        "nodes": [
            {
                "id": "node_1",
                "type": "cardStep",
                "position": {"x": 10, "y": 20},
                "data": {
                    "variant": "branch",
                    "label": "Pick",
                    "requireUserResponse": True,
                    "branches": [
                        {"id": "b1", "label": "Yes", "condition": "yes"},
                        {"id": "b2", "label": "No", "condition": "no"},
                    ],
                    "faqs": [{"id": "f1", "question": "Q", "answer": "A"}],
                },
            }
        ],
        "edges": [],
    }

    workflow = parse_workflow(raw)
    node = workflow.nodes[0]

    assert node.variant == NodeVariant.BRANCH
    assert node.require_user_response is True
    assert node.position == {"x": 10, "y": 20}
    assert [b.id for b in node.branches] == ["b1", "b2"]
    assert node.faqs[0].id == "f1"


def test_load_workflow_ignores_editor_styling_keys():
    """Test that unknown edge styling keys do not break loading."""
    raw = {
        "nodes": [{"id": "a"}, {"id": "b", "variant": "end"}],
        "edges": [{
            "id": "e1", "source": "a", "target": "b",
            "style": {"stroke": "#000"}, "labelStyle": {"fill": "#fff"}, "markerEnd": "arrow",
        }],
    }

    workflow = parse_workflow(raw)

    assert workflow.edges[0].style == {"stroke": "#000"}


def test_load_workflow_accepts_json():
    """Test that JSON text loads through the same path."""
    text = json.dumps({"nodes": [{"id": "only", "variant": "end"}], "edges": []})

    workflow = load_workflow(text)

    assert workflow.entry_node().id == "only"


def test_load_workflow_rejects_unknown_variant():
    """Test that an unknown variant is a schema error, not a validation issue."""
    yaml_text = """
nodes:
  - { id: a, variant: teleport }
edges: []
"""

    with pytest.raises(WorkflowSchemaError, match="schema error"):
        load_workflow(yaml_text)


def test_load_workflow_rejects_non_mapping():
    """Test that a YAML list at top level is rejected."""
    with pytest.raises(WorkflowSchemaError, match="must be a mapping"):
        load_workflow("- a\n- b\n")


def test_load_workflow_rejects_broken_yaml():
    """Test that malformed YAML surfaces as a schema error."""
    with pytest.raises(WorkflowSchemaError):
        load_workflow("nodes: [unclosed")


def test_load_workflow_validates_by_default():
    """Test that structural defects are rejected unless validation is skipped."""
    yaml_text = """
nodes:
  - { id: a }
edges:
  - { id: e1, source: a, target: ghost }
"""

    with pytest.raises(WorkflowValidationError, match="unknown node"):
        load_workflow(yaml_text)

    workflow = load_workflow(yaml_text, validate=False)
    assert len(workflow.edges) == 1


def test_empty_text_loads_empty_document():
    """Test that an empty file is the canonical empty workflow."""
    workflow = load_workflow("")

    assert workflow.is_empty
    assert workflow.position_x == 250
    assert workflow.position_y == 25


def test_dump_workflow_uses_flat_camel_case_shape():
    """Test that dumping produces camelCase keys and loads back identically."""
    yaml_text = """
nodes:
  - { id: a, requireUserResponse: true, instructionsDetailed: "long text" }
  - { id: b, variant: end }
edges:
  - { id: e1, source: a, target: b }
"""
    workflow = load_workflow(yaml_text)

    data = json.loads(dump_workflow(workflow))

    assert data["nodes"][0]["requireUserResponse"] is True
    assert data["nodes"][0]["instructionsDetailed"] == "long text"
    assert "globalFaqs" in data
    assert load_workflow(dump_workflow(workflow, fmt="yaml")).version == workflow.version


def test_entry_position_alias():
    """Test that entryPositionX/Y map onto the editor position fields."""
    workflow = parse_workflow({"entryPositionX": 5, "entryPositionY": 7})

    assert workflow.position_x == 5
    assert workflow.position_y == 7
