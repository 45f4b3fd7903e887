from __future__ import annotations

import logging
import math
import re
from collections import Counter
from datetime import date, datetime
from typing import Any, Callable, Optional

from node_models import (
    FIELD_TYPES,
    RULE_TYPES,
    CustomSchema,
    FieldDefinition,
    MindmapDocument,
    MindmapNode,
    Rule,
    SchemaError,
    ValidationResult,
)

logger = logging.getLogger(__name__)

_JAPANESE_DATE = re.compile(r"^(\d{4})年(\d{1,2})月(\d{1,2})日$")

# Which rule types make sense for which field types.
_APPLICABLE_RULES: dict[str, frozenset[str]] = {
    "string": frozenset({"length", "minLength", "maxLength", "pattern"}),
    "number": frozenset({"range", "min", "max"}),
    "boolean": frozenset(),
    "date": frozenset(),
    "select": frozenset(),
    "multiselect": frozenset(),
}

FieldCheck = Callable[[Any, FieldDefinition, str], list[SchemaError]]


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and not math.isnan(value)


def is_valid_date(value: Any) -> bool:
    """Accept ISO dates, ISO datetimes and ``YYYY年M月D日``."""
    if not isinstance(value, str) or not value.strip():
        return False
    text = value.strip()
    match = _JAPANESE_DATE.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        try:
            date(year, month, day)
        except ValueError:
            return False
        return True
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


# ============================================================
# SCHEMA DEFINITION
# ============================================================


def validate_schema_definition(schema: CustomSchema) -> list[SchemaError]:
    """Check the schema itself before using it against any node."""
    errors: list[SchemaError] = []
    seen: set[str] = set()

    for offset, definition in enumerate(schema.custom_fields):
        base = f"schema.customFields[{offset}]"
        if not definition.name:
            errors.append(SchemaError(f"{base}.name", "Field definition is missing 'name'", None, "MISSING_FIELD_NAME"))
        elif definition.name in seen:
            errors.append(
                SchemaError(f"{base}.name", f"Field '{definition.name}' is defined more than once", definition.name, "DUPLICATE_FIELD")
            )
        else:
            seen.add(definition.name)
        if not definition.label:
            errors.append(SchemaError(f"{base}.label", "Field definition is missing 'label'", None, "MISSING_FIELD_LABEL"))
        if not definition.type:
            errors.append(SchemaError(f"{base}.type", "Field definition is missing 'type'", None, "MISSING_FIELD_TYPE"))
            continue
        if definition.type not in FIELD_TYPES:
            errors.append(
                SchemaError(
                    f"{base}.type",
                    f"Unknown field type '{definition.type}' (expected one of: {', '.join(FIELD_TYPES)})",
                    definition.type,
                    "UNKNOWN_FIELD_TYPE",
                )
            )
            continue
        if definition.type in ("select", "multiselect") and not definition.options:
            errors.append(
                SchemaError(
                    f"{base}.options",
                    f"Field '{definition.name}' of type {definition.type} needs a non-empty 'options' list",
                    definition.options,
                    "MISSING_OPTIONS",
                )
            )
        for rule_offset, rule in enumerate(definition.validation):
            errors.extend(_check_rule_definition(rule, definition, f"{base}.validation[{rule_offset}]"))

    for offset, display_rule in enumerate(schema.display_rules):
        if display_rule.field not in seen:
            errors.append(
                SchemaError(
                    f"schema.displayRules[{offset}].field",
                    f"Display rule references unknown field '{display_rule.field}'",
                    display_rule.field,
                    "UNKNOWN_DISPLAY_FIELD",
                )
            )
    return errors


def _check_rule_definition(rule: Rule, definition: FieldDefinition, path: str) -> list[SchemaError]:
    if rule.type not in RULE_TYPES:
        return [SchemaError(f"{path}.type", f"Unknown rule type '{rule.type}'", rule.type, "UNKNOWN_RULE_TYPE")]
    if rule.type not in _APPLICABLE_RULES[definition.type]:
        return [
            SchemaError(
                f"{path}.type",
                f"Rule '{rule.type}' does not apply to {definition.type} field '{definition.name}'",
                rule.type,
                "INAPPLICABLE_RULE",
            )
        ]
    if rule.type == "pattern":
        pattern = rule.value
        if not isinstance(pattern, str):
            return [SchemaError(f"{path}.value", "Pattern rule needs a string 'value'", pattern, "INVALID_RULE")]
        try:
            re.compile(pattern)
        except re.error as exc:
            return [SchemaError(f"{path}.value", f"Invalid pattern: {exc}", pattern, "INVALID_RULE")]
        return []

    lower, upper = rule.lower_bound(), rule.upper_bound()
    for bound_name, bound in (("min", lower), ("max", upper)):
        if bound is not None and not _is_number(bound):
            return [SchemaError(f"{path}.{bound_name}", f"Rule bound '{bound_name}' must be a number", bound, "INVALID_RULE")]
    if lower is None and upper is None:
        return [SchemaError(path, f"Rule '{rule.type}' needs at least one bound", None, "INVALID_RULE")]
    if lower is not None and upper is not None and lower > upper:
        return [SchemaError(path, f"Rule '{rule.type}' has min ({lower}) greater than max ({upper})", [lower, upper], "INVALID_RANGE")]
    return []


# ============================================================
# FIELD VALUES
# ============================================================


def _rule_error(rule: Rule, path: str, value: Any, default: str, code: str) -> SchemaError:
    return SchemaError(path, rule.message or default, value, code)


def _check_bounds(measure: float, rule: Rule, definition: FieldDefinition, path: str, value: Any, unit: str) -> list[SchemaError]:
    lower, upper = rule.lower_bound(), rule.upper_bound()
    if lower is not None and measure < lower:
        return [_rule_error(rule, path, value, f"'{definition.label}' must be at least {lower}{unit}", "MIN_VALUE")]
    if upper is not None and measure > upper:
        return [_rule_error(rule, path, value, f"'{definition.label}' must be at most {upper}{unit}", "MAX_VALUE")]
    return []


def _check_string(value: Any, definition: FieldDefinition, path: str) -> list[SchemaError]:
    if not isinstance(value, str):
        return [SchemaError(path, f"'{definition.label}' must be a string", value, "INVALID_TYPE")]
    errors: list[SchemaError] = []
    for rule in definition.validation:
        if rule.type == "pattern":
            if isinstance(rule.value, str) and not re.search(rule.value, value):
                errors.append(_rule_error(rule, path, value, f"'{definition.label}' does not match {rule.value}", "PATTERN_MISMATCH"))
        elif rule.type in ("length", "minLength", "maxLength"):
            errors.extend(_check_bounds(len(value), rule, definition, path, value, " characters"))
    return errors


def _check_number(value: Any, definition: FieldDefinition, path: str) -> list[SchemaError]:
    if not _is_number(value):
        return [SchemaError(path, f"'{definition.label}' must be a number", value, "INVALID_TYPE")]
    errors: list[SchemaError] = []
    for rule in definition.validation:
        if rule.type in ("range", "min", "max"):
            errors.extend(_check_bounds(value, rule, definition, path, value, ""))
    return errors


def _check_boolean(value: Any, definition: FieldDefinition, path: str) -> list[SchemaError]:
    if isinstance(value, bool):
        return []
    return [SchemaError(path, f"'{definition.label}' must be true or false", value, "INVALID_TYPE")]


def _check_date(value: Any, definition: FieldDefinition, path: str) -> list[SchemaError]:
    if is_valid_date(value):
        return []
    return [SchemaError(path, f"'{definition.label}' must be a valid date (YYYY-MM-DD)", value, "INVALID_DATE")]


def _options_text(options: tuple[Any, ...]) -> str:
    return ", ".join(str(option) for option in options)


def _check_select(value: Any, definition: FieldDefinition, path: str) -> list[SchemaError]:
    options = definition.options or ()
    if value in options:
        return []
    return [
        SchemaError(path, f"'{definition.label}' must be one of: {_options_text(options)}", value, "INVALID_OPTION")
    ]


def _check_multiselect(value: Any, definition: FieldDefinition, path: str) -> list[SchemaError]:
    if not isinstance(value, list):
        return [SchemaError(path, f"'{definition.label}' must be a list", value, "INVALID_TYPE")]
    options = definition.options or ()
    return [
        SchemaError(path, f"'{definition.label}' value '{item}' is not one of: {_options_text(options)}", item, "INVALID_OPTION")
        for item in value
        if item not in options
    ]


FIELD_CHECKS: dict[str, FieldCheck] = {
    "string": _check_string,
    "number": _check_number,
    "boolean": _check_boolean,
    "date": _check_date,
    "select": _check_select,
    "multiselect": _check_multiselect,
}


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def validate_node_fields(node: MindmapNode, schema: CustomSchema, path: str) -> list[SchemaError]:
    """Check one node's custom fields; ``path`` is the node's dotted path."""
    errors: list[SchemaError] = []
    for definition in schema.custom_fields:
        field_path = f"{path}.{definition.name}"
        value = node.custom_fields.get(definition.name)
        if _is_missing(value):
            if definition.required:
                errors.append(
                    SchemaError(field_path, f"Required field '{definition.label}' is not set", value, "REQUIRED_FIELD_MISSING")
                )
            continue
        errors.extend(FIELD_CHECKS[definition.type](value, definition, field_path))
    return errors


def validate(document: MindmapDocument, schema: Optional[CustomSchema] = None) -> ValidationResult:
    """Validate every node's custom fields against ``schema``.

    Without a schema everything is valid. A schema that is itself broken
    is reported and then ignored for node checks, so a bad schema never
    blocks the document.
    """
    if schema is None:
        return ValidationResult(valid=True)

    definition_errors = validate_schema_definition(schema)
    if definition_errors:
        logger.debug("Schema definition has %d error(s); skipping field checks", len(definition_errors))
        return ValidationResult.from_errors(definition_errors)

    errors: list[SchemaError] = []
    stack: list[tuple[MindmapNode, str]] = [(document.root, "root")]
    while stack:
        node, path = stack.pop()
        errors.extend(validate_node_fields(node, schema, path))
        for offset in range(len(node.children) - 1, -1, -1):
            stack.append((node.children[offset], f"{path}.children[{offset}]"))
    return ValidationResult.from_errors(errors)


def check_unique_ids(document: MindmapDocument) -> list[SchemaError]:
    index = document.index
    return [
        SchemaError(index.path_of(node_id), f"Duplicate node id '{node_id}'", node_id, "DUPLICATE_ID")
        for node_id in index.duplicates
    ]


def format_validation_errors(errors: list[SchemaError] | tuple[SchemaError, ...]) -> str:
    if not errors:
        return "No validation errors"
    return "\n".join(f"{number}. {error.path}: {error.message}" for number, error in enumerate(errors, start=1))


def validation_stats(result: ValidationResult) -> dict[str, Any]:
    by_code = Counter(error.code or "UNKNOWN" for error in result.errors)
    by_path = Counter(error.path.split(".")[0] or "root" for error in result.errors)
    return {
        "total_errors": len(result.errors),
        "errors_by_type": dict(by_code),
        "errors_by_path": dict(by_path),
    }
