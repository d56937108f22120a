import ast
import re
from typing import Optional

from .models import Signal

# Conditions that match any signal
_WILDCARDS = ("", "*", "true", "any", "default")

# Names a condition expression may refer to
_REPLY_NAMES = ("reply", "text")
_CONSTANT_NAMES = ("true", "false", "none", "null")


def evaluate_condition(expression: str, context: dict) -> bool:
    """
    Evaluate a guard expression in the provided context.
    """
    expression = expression.strip().lower()
    if expression in ("true", ""):  # Default to true
        return True

    expression = expression.replace("&&", " and ").replace("||", " or ")
    expression = re.sub(r"\bnull\b", "none", expression)
    try:
        return bool(_safe_eval(expression, context))
    except (ValueError, KeyError, TypeError, SyntaxError):
        return False


def is_expression(condition: str) -> bool:
    """
    True when ``condition`` is a boolean expression over the reply, e.g.
    ``reply == 'yes'`` or ``'refund' in reply``. Plain words are not.
    """
    text = condition.strip().lower().replace("&&", " and ").replace("||", " or ")
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError:
        return False
    if not isinstance(tree.body, (ast.Compare, ast.BoolOp, ast.UnaryOp)):
        return False
    names = {n.id for n in ast.walk(tree) if isinstance(n, ast.Name)}
    calls = {n.func.id for n in ast.walk(tree) if isinstance(n, ast.Call) and isinstance(n.func, ast.Name)}
    allowed = set(_REPLY_NAMES) | set(_CONSTANT_NAMES) | {"len"}
    return bool(names & set(_REPLY_NAMES)) and names <= allowed and calls <= {"len"}


def match_condition(condition: Optional[str], reply: str) -> bool:
    """
    Match one branch condition against the reply text.

    - empty, ``*``, ``true``, ``any``, ``default``: always match
    - ``re:<pattern>``: case-insensitive regex search
    - expression over ``reply``/``text``: evaluated safely
    - anything else: case-insensitive exact match
    """
    cond = (condition or "").strip()
    text = (reply or "").strip()
    if cond.lower() in _WILDCARDS:
        return True
    if cond[:3].lower() == "re:":
        try:
            return re.search(cond[3:].strip(), text, re.IGNORECASE) is not None
        except re.error:
            return False
    if is_expression(cond):
        lowered = text.lower()
        return evaluate_condition(cond, {"reply": lowered, "text": lowered})
    return cond.lower() == text.lower()


def default_matcher(condition: Optional[str], signal: Signal) -> bool:
    """Branch matcher used by the executor unless another one is supplied."""
    return match_condition(condition, getattr(signal, "text", ""))


def _safe_eval(expression: str, context: dict):
    node = ast.parse(expression, mode='eval')
    constants = {"true": True, "false": False, "none": None}

    def _eval(node):
        if isinstance(node, ast.Expression):
            return _eval(node.body)

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(_eval(v) for v in node.values)
            if isinstance(node.op, ast.Or):
                return any(_eval(v) for v in node.values)

        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
            return not _eval(node.operand)

        if isinstance(node, ast.Compare):
            left = _eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = _eval(comparator)
                if isinstance(op, ast.Eq):      ok = (left == right)
                elif isinstance(op, ast.NotEq): ok = (left != right)
                elif isinstance(op, ast.Lt):    ok = (left < right)
                elif isinstance(op, ast.LtE):   ok = (left <= right)
                elif isinstance(op, ast.Gt):    ok = (left > right)
                elif isinstance(op, ast.GtE):   ok = (left >= right)
                elif isinstance(op, ast.In):    ok = (left in right)
                elif isinstance(op, ast.NotIn): ok = (left not in right)
                else:
                    raise ValueError(f"Unsupported operator: {op}")
                if not ok:
                    return False
                left = right
            return True

        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == "len":
            if len(node.args) != 1 or node.keywords:
                raise ValueError("len() takes exactly one argument")
            return len(_eval(node.args[0]))

        if isinstance(node, ast.Name):
            if node.id in context:
                return context[node.id]
            if node.id in constants:
                return constants[node.id]
            raise KeyError(node.id)
        if isinstance(node, ast.Constant):
            return node.value
        raise ValueError("Unsupported expression")

    return _eval(node)
