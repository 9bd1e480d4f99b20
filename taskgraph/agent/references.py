"""
Step references - typed pointers from one step's params into another
step's output

Forms accepted inside step params:
    "{{step_1.output.items[0].name}}"   whole value, keeps its type
    "Summary: {{step_1.output}}"        embedded, rendered as text
    {"$ref": "step_1.output.field"}     explicit mapping form

The "output" segment is optional. The "context" root addresses the task
context instead of a step.
"""
from typing import Any, Dict, Iterator, Optional, Tuple, Union
from dataclasses import dataclass
import json
import re

from taskgraph.errors import UnresolvedReferenceError

CONTEXT_ROOT = "context"
REF_KEY = "$ref"

STEP_ID = re.compile(r"[\w-]+")

_EXPR = r"[\w-]+(?:\.[\w-]+|\[\d+\])*"
# Any {{...}} is a reference; what fails the grammar is rejected, never passed through
_PLACEHOLDER = re.compile(r"\{\{([^{}]*)\}\}")
_EXPR_FULL = re.compile(_EXPR)
_TOKEN = re.compile(r"\[(\d+)\]|([^.\[\]]+)")

PathKey = Union[str, int]


@dataclass(frozen=True)
class StepReference:
    """Step id plus a path into that step's output"""
    step_id: str
    path: Tuple[PathKey, ...] = ()

    @property
    def is_context(self) -> bool:
        return self.step_id == CONTEXT_ROOT

    @classmethod
    def parse(cls, expression: str) -> "StepReference":
        expression = expression.strip()
        if not _EXPR_FULL.fullmatch(expression):
            raise ValueError(f"Malformed reference '{expression}'")

        step_id, *path = parse_path(expression)
        if step_id != CONTEXT_ROOT and path[:1] == ["output"]:
            path = path[1:]
        return cls(step_id=step_id, path=tuple(path))

    def __str__(self) -> str:
        parts = [self.step_id]
        for key in self.path:
            parts.append(f"[{key}]" if isinstance(key, int) else f".{key}")
        return "".join(parts)


def parse_path(path: str) -> Tuple[PathKey, ...]:
    """Split "a.b[0].c" into ("a", "b", 0, "c")"""
    return tuple(int(index) if index else name for index, name in _TOKEN.findall(path))


def iter_references(value: Any) -> Iterator[StepReference]:
    """Yield every reference found in a params structure"""
    if isinstance(value, dict):
        if _is_ref_mapping(value):
            yield StepReference.parse(value[REF_KEY])
            return
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)
    elif isinstance(value, str):
        for match in _PLACEHOLDER.finditer(value):
            yield StepReference.parse(match.group(1))


def resolve_params(
    params: Dict[str, Any],
    outputs: Dict[str, Any],
    context: Optional[Dict[str, Any]] = None,
    step_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Replace every reference in params with the value it points at.

    Args:
        params: Raw step params
        outputs: Outputs of succeeded steps, keyed by step id
        context: Task context for "context." references
        step_id: Step being resolved, for error reporting

    Raises:
        UnresolvedReferenceError: if a referenced step has no successful
            output or the path does not exist in it
    """
    return _resolve(params, outputs, context or {}, step_id)


def lookup(
    ref: StepReference,
    outputs: Dict[str, Any],
    context: Dict[str, Any],
    step_id: Optional[str] = None,
) -> Any:
    """Resolve a single reference"""
    if ref.is_context:
        current = context
    elif ref.step_id in outputs:
        current = outputs[ref.step_id]
    else:
        raise UnresolvedReferenceError(
            step_id, str(ref), f"step '{ref.step_id}' has no successful output"
        )

    for key in ref.path:
        if isinstance(current, dict):
            if key not in current and str(key) in current:
                key = str(key)
            if key not in current:
                raise UnresolvedReferenceError(step_id, str(ref), f"key '{key}' not found")
            current = current[key]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(key)
            except ValueError:
                raise UnresolvedReferenceError(step_id, str(ref), f"'{key}' is not a list index")
            if not -len(current) <= index < len(current):
                raise UnresolvedReferenceError(step_id, str(ref), f"index {index} out of range")
            current = current[index]
        else:
            raise UnresolvedReferenceError(
                step_id, str(ref), f"cannot index into {type(current).__name__} with '{key}'"
            )
    return current


def _resolve(value: Any, outputs: Dict[str, Any], context: Dict[str, Any], step_id: Optional[str]) -> Any:
    if isinstance(value, dict):
        if _is_ref_mapping(value):
            return lookup(StepReference.parse(value[REF_KEY]), outputs, context, step_id)
        return {k: _resolve(v, outputs, context, step_id) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve(v, outputs, context, step_id) for v in value]
    if not isinstance(value, str):
        return value

    whole = _PLACEHOLDER.fullmatch(value.strip())
    if whole:
        return lookup(StepReference.parse(whole.group(1)), outputs, context, step_id)

    return _PLACEHOLDER.sub(
        lambda m: _render(lookup(StepReference.parse(m.group(1)), outputs, context, step_id)),
        value,
    )


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def _is_ref_mapping(value: Dict[str, Any]) -> bool:
    return set(value.keys()) == {REF_KEY} and isinstance(value[REF_KEY], str)
