"""Example: report every structural issue of a workflow file.

Usage: python -m examples.validate_workflow path/to/workflow.yaml
"""
import sys
from pathlib import Path

from convoflow.workflow.compiler import load_workflow
from convoflow.workflow.validator import validate


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print(__doc__)
        return 2

    workflow = load_workflow(Path(argv[0]).read_text(), validate=False)
    result = validate(workflow)
    if result.ok:
        print(f"{argv[0]}: OK ({len(workflow.nodes)} nodes, {len(workflow.edges)} edges)")
        return 0

    for issue in result.issues:
        print(f"{argv[0]}: [{issue.kind.value}] {issue.message}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
