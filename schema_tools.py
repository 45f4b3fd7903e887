from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

from node_models import CustomSchema, DisplayRule, FieldDefinition, MindmapDocument, Rule
from schema_validator import is_valid_date

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MAX_SELECT_OPTIONS = 10
_COMPATIBLE_MIGRATIONS = {
    ("string", "select"),
    ("number", "string"),
    ("boolean", "string"),
    ("date", "string"),
}
_DEFAULT_DISPLAY = {"boolean": "icon", "select": "badge", "multiselect": "badge"}


def field_label(name: str) -> str:
    """``dueDate`` / ``due_date`` -> ``Due Date``."""
    spaced = re.sub(r"(?<=[a-z0-9])([A-Z])", r" \1", name).replace("_", " ")
    words = [word for word in spaced.split(" ") if word]
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _infer_type(values: list[Any]) -> str:
    present = [value for value in values if value is not None and value != ""]
    if not present:
        return "string"
    if all(isinstance(value, bool) for value in present):
        return "boolean"
    if all(isinstance(value, (int, float)) and not isinstance(value, bool) for value in present):
        return "number"
    if all(isinstance(value, list) and all(isinstance(item, str) for item in value) for value in present):
        return "multiselect"
    if all(isinstance(value, str) for value in present):
        if all(_ISO_DATE.match(value) and is_valid_date(value) for value in present):
            return "date"
        distinct = set(present)
        if 1 < len(distinct) <= _MAX_SELECT_OPTIONS and len(distinct) < len(present):
            return "select"
    return "string"


def _number_rules(values: list[Any]) -> tuple[Rule, ...]:
    numbers = [value for value in values if isinstance(value, (int, float)) and not isinstance(value, bool)]
    if not numbers:
        return ()
    low, high = min(numbers), max(numbers)
    rules: list[Rule] = []
    if low >= 0:
        rules.append(Rule(type="min", value=0))
        if high <= 100:
            rules.append(Rule(type="max", value=100))
    return tuple(rules)


def generate_schema(document: MindmapDocument) -> CustomSchema:
    """Infer a schema from the custom fields used across the tree."""
    observed: dict[str, list[Any]] = {}
    stack = [document.root]
    while stack:
        node = stack.pop()
        for name, value in node.custom_fields.items():
            observed.setdefault(name, []).append(value)
        stack.extend(reversed(node.children))

    definitions: list[FieldDefinition] = []
    for name in sorted(observed):
        values = observed[name]
        kind = _infer_type(values)
        filled = [value for value in values if value is not None and value != ""]
        options = None
        rules: tuple[Rule, ...] = ()
        if kind == "select":
            options = tuple(sorted(set(filled)))
        elif kind == "multiselect":
            options = tuple(sorted({item for value in filled for item in value}))
        elif kind == "number":
            rules = _number_rules(values)
        definitions.append(
            FieldDefinition(
                name=name,
                label=field_label(name),
                type=kind,
                options=options,
                required=len(values) > 1 and len(filled) == len(values),
                validation=rules,
                description=f"Generated from {len(values)} node(s)",
            )
        )

    display_rules = tuple(
        DisplayRule(field=definition.name, display_type=_DEFAULT_DISPLAY.get(definition.type, "text"), position="inline")
        for definition in definitions
    )
    return CustomSchema(
        version="1.0",
        custom_fields=tuple(definitions),
        display_rules=display_rules,
        description=f"Schema generated from {document.title}",
    )


@dataclass
class SchemaChanges:
    added_fields: list[str] = field(default_factory=list)
    removed_fields: list[str] = field(default_factory=list)
    modified_fields: list[str] = field(default_factory=list)
    added_rules: list[str] = field(default_factory=list)
    removed_rules: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added_fields or self.removed_fields or self.modified_fields or self.added_rules or self.removed_rules)


def _same_definition(a: FieldDefinition, b: FieldDefinition) -> bool:
    return (
        a.type == b.type
        and a.label == b.label
        and a.required == b.required
        and (a.options or ()) == (b.options or ())
        and a.validation == b.validation
    )


def schema_changes(old: CustomSchema, new: CustomSchema) -> SchemaChanges:
    old_fields = {f.name: f for f in old.custom_fields}
    new_fields = {f.name: f for f in new.custom_fields}
    old_rules = {r.field for r in old.display_rules}
    new_rules = {r.field for r in new.display_rules}
    return SchemaChanges(
        added_fields=[name for name in new_fields if name not in old_fields],
        removed_fields=[name for name in old_fields if name not in new_fields],
        modified_fields=[
            name for name, definition in new_fields.items()
            if name in old_fields and not _same_definition(old_fields[name], definition)
        ],
        added_rules=[r.field for r in new.display_rules if r.field not in old_rules],
        removed_rules=[r.field for r in old.display_rules if r.field not in new_rules],
    )


def migrate_schema(old: CustomSchema, new: CustomSchema) -> tuple[CustomSchema, list[str]]:
    """Fold ``new`` into ``old`` without dropping anything ``old`` defines.

    New fields and display rules are appended. A type change is applied
    only when existing values stay meaningful under the new type;
    otherwise the old type is kept and the conflict is logged.
    """
    log: list[str] = []
    fields = list(old.custom_fields)
    positions = {definition.name: offset for offset, definition in enumerate(fields)}

    for definition in new.custom_fields:
        if definition.name not in positions:
            positions[definition.name] = len(fields)
            fields.append(definition)
            log.append(f"Added field: {definition.name} ({definition.type})")
            continue
        existing = fields[positions[definition.name]]
        if existing.type == definition.type:
            continue
        if (existing.type, definition.type) in _COMPATIBLE_MIGRATIONS:
            fields[positions[definition.name]] = replace(existing, type=definition.type, options=definition.options)
            log.append(f"Changed field type: {definition.name} ({existing.type} -> {definition.type})")
        else:
            log.append(
                f"Warning: incompatible type change for {definition.name} ({existing.type} -> {definition.type}); kept {existing.type}"
            )

    rules = list(old.display_rules)
    known_rules = {rule.field for rule in rules}
    for rule in new.display_rules:
        if rule.field not in known_rules:
            rules.append(rule)
            known_rules.add(rule.field)
            log.append(f"Added display rule: {rule.field}")

    migrated = replace(
        old,
        version=new.version or old.version,
        custom_fields=tuple(fields),
        display_rules=tuple(rules),
    )
    return migrated, log
