"""
Argument validation and repair for tool calls proposed by the language model.

`validate` never raises for bad input: it returns ArgsValid with the
normalized arguments or ArgsInvalid with a single human-readable message
that can be fed back to the model.
"""
import json
import re
from typing import Any, Dict, List, Literal, Tuple, Type, Union, get_args, get_origin

from pydantic import BaseModel, ValidationError

from copilot.core.logging import logger
from copilot.tools.registry import schema_for


class ArgsValid(BaseModel):
    ok: Literal[True] = True
    args: Any


class ArgsInvalid(BaseModel):
    ok: Literal[False] = False
    message: str


ValidationResult = Union[ArgsValid, ArgsInvalid]

_INTEGER = re.compile(r"^\s*[+-]?\d+\s*$")
_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)\s*$")
_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _unwrap_optional(annotation: Any) -> Any:
    if get_origin(annotation) is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _repair_value(annotation: Any, value: Any) -> Any:
    if not isinstance(value, str):
        return value

    target = _unwrap_optional(annotation)
    if target is int and _INTEGER.match(value):
        return int(value)
    if target is float and _NUMBER.match(value):
        return float(value)
    if target is bool and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    if get_origin(target) is list:
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def repair_args(model: Type[BaseModel], args: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Fix the common shape mistakes models make before validating.

    Numeral strings become numbers, "true"/"false" strings become booleans,
    and a comma-separated string given for a list field becomes a list.

    Returns:
        The repaired copy of `args` and the names of the fields that changed.
    """
    repaired = dict(args)
    changed = []
    for name, field in model.model_fields.items():
        if name not in repaired:
            continue
        fixed = _repair_value(field.annotation, repaired[name])
        if fixed is not repaired[name]:
            repaired[name] = fixed
            changed.append(name)
    return repaired, changed


def _field_path(loc: Tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) or "arguments"


def format_error(error: Dict[str, Any]) -> str:
    """Turn one pydantic error into the message shown to the model."""
    field = _field_path(error["loc"])
    kind = error["type"]
    ctx = error.get("ctx") or {}
    value = error.get("input")

    if kind == "missing":
        return f"Missing required field '{field}'"
    if kind in ("literal_error", "enum"):
        return f"Invalid value for '{field}': {value!r} (expected one of {ctx.get('expected')})"
    if kind in ("greater_than_equal", "greater_than"):
        bound = ctx.get("ge", ctx.get("gt"))
        return f"Value for '{field}' is out of range: {value} (minimum {bound})"
    if kind in ("less_than_equal", "less_than"):
        bound = ctx.get("le", ctx.get("lt"))
        return f"Value for '{field}' is out of range: {value} (maximum {bound})"
    if kind in ("string_too_short", "too_short"):
        return f"Length of '{field}' is out of range: {len(value)} (minimum {ctx.get('min_length')})"
    if kind in ("string_too_long", "too_long"):
        return f"Length of '{field}' is out of range: {len(value)} (maximum {ctx.get('max_length')})"
    if kind == "string_pattern_mismatch":
        return f"Invalid format for '{field}': {value!r}"
    return f"Invalid value for '{field}': {error['msg']}"


def validate(tool_name: str, raw_args: Any) -> ValidationResult:
    """
    Validate and normalize the arguments of a proposed tool call.

    Args:
        tool_name: Name of the tool the model wants to call
        raw_args: Arguments as produced by the model

    Returns:
        ArgsValid with JSON-safe arguments (only the fields the caller
        supplied) or ArgsInvalid naming the first problem found.
    """
    schema = schema_for(tool_name)
    if schema is None:
        return ArgsValid(args=raw_args)

    if isinstance(raw_args, str):
        try:
            raw_args = json.loads(raw_args)
        except ValueError:
            return ArgsInvalid(message="Arguments must be a JSON object")

    if not isinstance(raw_args, dict):
        return ArgsInvalid(message="Arguments must be a JSON object")

    args, repaired = repair_args(schema.args_schema, raw_args)
    if repaired:
        logger.warning(f"Repaired arguments for {tool_name}: {', '.join(repaired)}")

    try:
        parsed = schema.args_schema.model_validate(args)
    except ValidationError as e:
        message = format_error(e.errors()[0])
        logger.warning(f"Invalid arguments for {tool_name}: {message}")
        return ArgsInvalid(message=message)

    return ArgsValid(args=parsed.model_dump(mode="json", exclude_unset=True))
