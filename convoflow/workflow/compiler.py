""" Load and validate WorkflowDocument from YAML or JSON text. """

import json
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from .errors import WorkflowSchemaError
from .schema import WorkflowDocument
from .validator import ensure_valid


def parse_workflow(raw: Dict[str, Any]) -> WorkflowDocument:
    """
    Build a WorkflowDocument from a decoded mapping. Only type errors fail;
    structural defects are left for the validator.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise WorkflowSchemaError(f"Workflow must be a mapping, got {type(raw).__name__}")
    try:
        return WorkflowDocument.model_validate(raw)
    except ValidationError as e:
        raise WorkflowSchemaError(f"Workflow schema error: {e}") from e


def load_workflow(text: str, *, validate: bool = True) -> WorkflowDocument:
    """
    Load a WorkflowDocument from a YAML string (JSON is accepted as well,
    being a YAML subset). With ``validate`` the structural invariants are
    enforced and ``WorkflowValidationError`` is raised on any issue.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowSchemaError(f"Workflow is not valid YAML/JSON: {e}") from e

    workflow = parse_workflow(data)
    if validate:
        ensure_valid(workflow)
    return workflow


def dump_workflow(workflow: WorkflowDocument, *, fmt: str = "json") -> str:
    """Serialize to the flat camelCase wire shape."""
    data = workflow.model_dump(mode="json", by_alias=True)
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported format: {fmt}")
