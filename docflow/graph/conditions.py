"""
Edge conditions: a closed predicate grammar for branch traversal.

An edge may carry a condition that decides, once its source node has
completed, whether the edge is "active".  Conditions never execute host
code.  Three authoring forms are accepted:

Predicate dict::

    {"field": "metadata.classification", "operator": "eq", "value": "invoice"}

    ``field`` is a dotted path into the *output view* of the edge's source
    node (or of ``node`` when given).  The view is::

        {
            "artifacts": [{"uri": ..., "kind": ..., "metadata": {...}}, ...],
            "count":     <number of artifacts>,
            "uris":      [...],
            "metadata":  <all artifact metadata merged, later wins>,
        }

Combinators::

    {"all": [<cond>, ...]}    {"any": [<cond>, ...]}    {"not": <cond>}
    [<cond>, ...]             # same as "all"

Expression string (restricted Python syntax)::

    "output.count > 1 and output.metadata.classification == 'invoice'"

    ``output`` is the source node's view; any other name resolves to the
    view of the node with that id.  Only comparisons, boolean operators,
    ``not``, literals and attribute/index lookups on views are allowed.

Parse problems raise ValidationError (caught at graph validation time).
Evaluation problems raise ConditionError; the executor treats that as a
failure of the target node.
"""

from __future__ import annotations

import ast
import operator
import re
from dataclasses import dataclass
from typing import Any, Callable

from docflow.core.errors import ConditionError, ValidationError
from docflow.graph.models import ArtifactRef


class _Missing:
    """Marker for a field path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def _contains(container: Any, item: Any) -> bool:
    return item in container


def _matches(value: Any, pattern: Any) -> bool:
    return re.search(str(pattern), str(value)) is not None


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "in": lambda value, options: value in options,
    "not_in": lambda value, options: value not in options,
    "contains": _contains,
    "startswith": lambda value, prefix: str(value).startswith(str(prefix)),
    "endswith": lambda value, suffix: str(value).endswith(str(suffix)),
    "matches": _matches,
}

# Operators that only look at whether the field resolves
PRESENCE_OPERATORS = {"exists", "not_exists"}

ALIASES = {
    "==": "eq", "!=": "ne", ">": "gt", ">=": "gte", "<": "lt", "<=": "lte",
    "equals": "eq", "not_equals": "ne",
}


# ═══════════════════════════════════════════════════════════
#  Evaluation context
# ═══════════════════════════════════════════════════════════

def output_view(artifacts: list[ArtifactRef]) -> dict[str, Any]:
    """Read-only projection of a node's outputs used by conditions."""
    merged: dict[str, Any] = {}
    for artifact in artifacts:
        merged.update(artifact.metadata)
    return {
        "artifacts": [a.to_dict() for a in artifacts],
        "count": len(artifacts),
        "uris": [a.uri for a in artifacts],
        "metadata": merged,
    }


@dataclass
class ConditionContext:
    """Outputs available when an edge is evaluated."""

    source: str
    outputs: dict[str, list[ArtifactRef]]

    def view(self, node_id: str | None = None) -> dict[str, Any]:
        node_id = node_id or self.source
        if node_id not in self.outputs:
            raise ConditionError(f"Condition references node '{node_id}' which has no outputs yet", node_id=node_id)
        return output_view(self.outputs[node_id])


def resolve_path(data: Any, path: str) -> Any:
    """Walk a dotted path through dicts and lists; MISSING if it breaks."""
    current = data
    for part in [p for p in path.split(".") if p]:
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current


# ═══════════════════════════════════════════════════════════
#  Condition tree
# ═══════════════════════════════════════════════════════════

class Condition:
    """Base class for parsed conditions."""

    def evaluate(self, ctx: ConditionContext) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Predicate(Condition):
    field: str
    operator: str
    value: Any = None
    node: str | None = None

    def evaluate(self, ctx: ConditionContext) -> bool:
        actual = resolve_path(ctx.view(self.node), self.field)
        if self.operator == "exists":
            return actual is not MISSING
        if self.operator == "not_exists":
            return actual is MISSING
        if actual is MISSING:
            return False
        try:
            return bool(OPERATORS[self.operator](actual, self.value))
        except (TypeError, ValueError, re.error) as exc:
            raise ConditionError(
                f"Cannot evaluate {self.field} {self.operator} {self.value!r}: {exc}",
                details={"field": self.field, "operator": self.operator},
            ) from exc


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: tuple[Condition, ...]

    def evaluate(self, ctx: ConditionContext) -> bool:
        return all(c.evaluate(ctx) for c in self.conditions)


@dataclass(frozen=True)
class AnyOf(Condition):
    conditions: tuple[Condition, ...]

    def evaluate(self, ctx: ConditionContext) -> bool:
        return any(c.evaluate(ctx) for c in self.conditions)


@dataclass(frozen=True)
class Not(Condition):
    condition: Condition

    def evaluate(self, ctx: ConditionContext) -> bool:
        return not self.condition.evaluate(ctx)


@dataclass(frozen=True)
class Always(Condition):
    value: bool = True

    def evaluate(self, ctx: ConditionContext) -> bool:
        return self.value


# ═══════════════════════════════════════════════════════════
#  Restricted expressions
# ═══════════════════════════════════════════════════════════

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "none": None, "True": True, "False": False, "None": None}


def _check_expression(node: ast.AST) -> None:
    """Reject anything outside the whitelisted grammar."""
    if isinstance(node, ast.Expression):
        _check_expression(node.body)
    elif isinstance(node, ast.BoolOp):
        for v in node.values:
            _check_expression(v)
    elif isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
        _check_expression(node.operand)
    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in _COMPARE_OPS:
                raise ValueError(f"unsupported comparison {type(op).__name__}")
        _check_expression(node.left)
        for c in node.comparators:
            _check_expression(c)
    elif isinstance(node, ast.Attribute):
        _check_expression(node.value)
    elif isinstance(node, ast.Subscript):
        _check_expression(node.value)
        if not isinstance(node.slice, ast.Constant):
            raise ValueError("only constant subscripts are allowed")
    elif isinstance(node, (ast.List, ast.Tuple)):
        for elt in node.elts:
            _check_expression(elt)
    elif isinstance(node, (ast.Name, ast.Constant)):
        return
    else:
        raise ValueError(f"unsupported syntax {type(node).__name__}")


@dataclass(frozen=True)
class Expression(Condition):
    source: str
    tree: ast.Expression

    @classmethod
    def parse(cls, text: str) -> Expression:
        normalized = text.replace("&&", " and ").replace("||", " or ")
        try:
            tree = ast.parse(normalized.strip(), mode="eval")
            _check_expression(tree)
        except (SyntaxError, ValueError) as exc:
            raise ValidationError(f"Invalid condition expression {text!r}: {exc}", problems=[str(exc)]) from exc
        return cls(source=text, tree=tree)

    def evaluate(self, ctx: ConditionContext) -> bool:
        try:
            return bool(self._eval(self.tree.body, ctx))
        except ConditionError:
            raise
        except (TypeError, ValueError, KeyError, IndexError) as exc:
            raise ConditionError(f"Cannot evaluate {self.source!r}: {exc}") from exc

    def _eval(self, node: ast.AST, ctx: ConditionContext) -> Any:
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(self._eval(v, ctx) for v in node.values)
            return any(self._eval(v, ctx) for v in node.values)
        if isinstance(node, ast.UnaryOp):
            return not self._eval(node.operand, ctx)
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, ctx)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, ctx)
                if not _COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.Attribute):
            return self._lookup(self._eval(node.value, ctx), node.attr)
        if isinstance(node, ast.Subscript):
            return self._lookup(self._eval(node.value, ctx), node.slice.value)
        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval(e, ctx) for e in node.elts]
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            if node.id == "output":
                return ctx.view()
            return ctx.view(node.id)
        raise ConditionError(f"Unsupported expression node {type(node).__name__}")

    @staticmethod
    def _lookup(container: Any, key: Any) -> Any:
        # Only plain data is reachable; never getattr on host objects
        if isinstance(container, dict):
            if key not in container:
                raise ConditionError(f"Unknown field '{key}' in condition")
            return container[key]
        if isinstance(container, (list, tuple)) and isinstance(key, int):
            return container[key]
        raise ConditionError(f"Cannot look up '{key}' on {type(container).__name__}")


# ═══════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════

def parse_condition(raw: Any) -> Condition | None:
    """
    Turn an authored condition into a Condition tree.

    Returns None when there is no condition (edge always active).

    Raises:
        ValidationError: if the condition is malformed.
    """
    if raw is None or raw == "" or raw == {}:
        return None
    if isinstance(raw, bool):
        return Always(raw)
    if isinstance(raw, str):
        if raw.strip().lower() == "true":
            return None
        return Expression.parse(raw)
    if isinstance(raw, list):
        return AllOf(tuple(_parse_required(c) for c in raw))
    if isinstance(raw, dict):
        if "all" in raw:
            return AllOf(tuple(_parse_required(c) for c in _as_list(raw["all"], "all")))
        if "any" in raw:
            return AnyOf(tuple(_parse_required(c) for c in _as_list(raw["any"], "any")))
        if "not" in raw:
            return Not(_parse_required(raw["not"]))
        return _parse_predicate(raw)
    raise ValidationError(f"Unsupported condition type {type(raw).__name__}", problems=[repr(raw)])


def _parse_required(raw: Any) -> Condition:
    parsed = parse_condition(raw)
    return parsed if parsed is not None else Always(True)


def _as_list(value: Any, key: str) -> list:
    if not isinstance(value, list):
        raise ValidationError(f"Condition '{key}' expects a list", problems=[repr(value)])
    return value


def _parse_predicate(raw: dict[str, Any]) -> Predicate:
    field_path = raw.get("field")
    op = raw.get("operator", "eq")
    op = ALIASES.get(op, op)
    problems = []
    if not isinstance(field_path, str) or not field_path:
        problems.append("predicate requires a non-empty 'field'")
    if op not in OPERATORS and op not in PRESENCE_OPERATORS:
        problems.append(f"unknown operator '{op}'")
    if op in ("in", "not_in") and not isinstance(raw.get("value"), (list, tuple, str)):
        problems.append(f"operator '{op}' expects a list value")
    if problems:
        raise ValidationError(f"Invalid condition {raw!r}", problems=problems)
    return Predicate(field=field_path, operator=op, value=raw.get("value"), node=raw.get("node"))


def evaluate_condition(raw: Any, ctx: ConditionContext) -> bool:
    """Parse and evaluate in one go.  No condition means active."""
    condition = parse_condition(raw)
    return True if condition is None else condition.evaluate(ctx)
