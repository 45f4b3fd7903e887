from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import TYPE_CHECKING, Any, Literal, Optional

if TYPE_CHECKING:
    from node_index import NodeIndex


Format = Literal["json", "yaml"]
Severity = Literal["error", "warning", "info"]
FieldType = Literal["string", "number", "boolean", "date", "select", "multiselect"]

FIELD_TYPES: tuple[str, ...] = ("string", "number", "boolean", "date", "select", "multiselect")
RULE_TYPES: tuple[str, ...] = ("range", "min", "max", "length", "minLength", "maxLength", "pattern")

# Wire key -> attribute name for the optional scalar node fields.
_NODE_SCALARS = {
    "description": "description",
    "priority": "priority",
    "status": "status",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "deadline": "deadline",
}
_NODE_KNOWN_KEYS = {
    "id",
    "title",
    "children",
    "collapsed",
    "tags",
    "customFields",
    "links",
    *_NODE_SCALARS,
}


@dataclass(frozen=True)
class Link:
    url: str
    title: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Link":
        if isinstance(data, str):
            return cls(url=data)
        if not isinstance(data, dict):
            return cls(url=str(data))
        extra = {k: v for k, v in data.items() if k not in ("url", "title")}
        title = data.get("title")
        return cls(url=str(data.get("url", "")), title=title, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.title is not None:
            out["title"] = self.title
        out["url"] = self.url
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class MindmapNode:
    """One entry of the outline tree.

    Instances are never mutated once they are part of a published
    document; edits go through ``tree_mutator`` which returns copies.
    """

    id: str
    title: str
    description: Optional[str] = None
    children: tuple["MindmapNode", ...] = ()
    collapsed: bool = False
    # Ordered, duplicates allowed.
    tags: tuple[str, ...] = ()
    custom_fields: dict[str, Any] = field(default_factory=dict)
    priority: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deadline: Optional[str] = None
    links: tuple[Link, ...] = ()
    # Keys we do not model (color, icon, assignee, metadata, ...).
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MindmapNode":
        """Build a node from an already structurally checked mapping."""
        children = tuple(
            cls.from_dict(child) for child in data.get("children") or () if isinstance(child, dict)
        )
        tags = data.get("tags") or ()
        custom_fields = data.get("customFields") or {}
        links = data.get("links") or ()
        scalars = {attr: data.get(key) for key, attr in _NODE_SCALARS.items()}
        extra = {k: v for k, v in data.items() if k not in _NODE_KNOWN_KEYS}
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            children=children,
            collapsed=bool(data.get("collapsed", False)),
            tags=tuple(str(tag) for tag in tags) if isinstance(tags, (list, tuple)) else (str(tags),),
            custom_fields=dict(custom_fields) if isinstance(custom_fields, dict) else {},
            links=tuple(Link.from_dict(link) for link in links) if isinstance(links, (list, tuple)) else (),
            extra=extra,
            **scalars,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.description is not None:
            out["description"] = self.description
        if self.priority is not None:
            out["priority"] = self.priority
        if self.status is not None:
            out["status"] = self.status
        if self.tags:
            out["tags"] = list(self.tags)
        if self.custom_fields:
            out["customFields"] = dict(self.custom_fields)
        if self.links:
            out["links"] = [link.to_dict() for link in self.links]
        if self.collapsed:
            out["collapsed"] = True
        if self.created_at is not None:
            out["createdAt"] = self.created_at
        if self.updated_at is not None:
            out["updatedAt"] = self.updated_at
        if self.deadline is not None:
            out["deadline"] = self.deadline
        out.update(self.extra)
        out["children"] = [child.to_dict() for child in self.children]
        return out


@dataclass(frozen=True)
class Rule:
    type: str
    min: Optional[float] = None
    max: Optional[float] = None
    # Single bound for min/max/minLength/maxLength, or the regex for pattern.
    value: Any = None
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Rule":
        if not isinstance(data, dict):
            return cls(type=str(data))
        return cls(
            type=str(data.get("type", "")),
            min=data.get("min"),
            max=data.get("max"),
            value=data.get("value"),
            message=data.get("message"),
        )

    def lower_bound(self) -> Optional[float]:
        if self.min is not None:
            return self.min
        if self.type in ("min", "minLength"):
            return self.value
        return None

    def upper_bound(self) -> Optional[float]:
        if self.max is not None:
            return self.max
        if self.type in ("max", "maxLength"):
            return self.value
        return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        for key in ("min", "max", "value", "message"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    label: str
    type: str
    options: Optional[tuple[Any, ...]] = None
    required: bool = False
    validation: tuple[Rule, ...] = ()
    description: Optional[str] = None
    default: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> "FieldDefinition":
        if not isinstance(data, dict):
            return cls(name="", label="", type="")
        options = data.get("options")
        rules = data.get("validation") or ()
        return cls(
            name=str(data.get("name") or ""),
            label=str(data.get("label") or ""),
            type=str(data.get("type") or ""),
            options=tuple(options) if isinstance(options, (list, tuple)) else None,
            required=bool(data.get("required", False)),
            validation=tuple(Rule.from_dict(rule) for rule in rules) if isinstance(rules, (list, tuple)) else (),
            description=data.get("description"),
            default=data.get("defaultValue"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "label": self.label, "type": self.type}
        if self.description is not None:
            out["description"] = self.description
        if self.required:
            out["required"] = True
        if self.options is not None:
            out["options"] = list(self.options)
        if self.validation:
            out["validation"] = [rule.to_dict() for rule in self.validation]
        if self.default is not None:
            out["defaultValue"] = self.default
        return out


@dataclass(frozen=True)
class DisplayRule:
    field: str
    display_type: str = "text"
    position: Optional[str] = None
    style: Optional[dict[str, Any]] = None
    condition: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "DisplayRule":
        if not isinstance(data, dict):
            return cls(field="")
        return cls(
            field=str(data.get("field") or ""),
            display_type=str(data.get("displayType") or "text"),
            position=data.get("position"),
            style=data.get("style"),
            condition=data.get("condition"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"field": self.field, "displayType": self.display_type}
        if self.position is not None:
            out["position"] = self.position
        if self.style is not None:
            out["style"] = self.style
        if self.condition is not None:
            out["condition"] = self.condition
        return out


@dataclass(frozen=True)
class CustomSchema:
    version: str = "1.0"
    custom_fields: tuple[FieldDefinition, ...] = ()
    display_rules: tuple[DisplayRule, ...] = ()
    description: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "CustomSchema":
        """Lenient conversion; malformed entries are left for the validator."""
        if not isinstance(data, dict):
            return cls()
        # Older schema files use "fields" instead of "customFields".
        fields = data.get("customFields", data.get("fields")) or ()
        rules = data.get("displayRules") or ()
        known = {"version", "customFields", "fields", "displayRules", "description"}
        return cls(
            version=str(data.get("version", "1.0")),
            custom_fields=tuple(FieldDefinition.from_dict(f) for f in fields) if isinstance(fields, (list, tuple)) else (),
            display_rules=tuple(DisplayRule.from_dict(r) for r in rules) if isinstance(rules, (list, tuple)) else (),
            description=data.get("description"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def field_named(self, name: str) -> Optional[FieldDefinition]:
        return next((f for f in self.custom_fields if f.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"version": self.version}
        if self.description is not None:
            out["description"] = self.description
        out["customFields"] = [f.to_dict() for f in self.custom_fields]
        if self.display_rules:
            out["displayRules"] = [r.to_dict() for r in self.display_rules]
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class MindmapDocument:
    version: str
    title: str
    root: MindmapNode
    schema: Optional[CustomSchema] = None
    # Top-level keys we do not model (description, author, settings, ...).
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MindmapDocument":
        schema_data = data.get("schema")
        extra = {k: v for k, v in data.items() if k not in ("version", "title", "root", "schema")}
        return cls(
            version=str(data["version"]),
            title=str(data["title"]),
            root=MindmapNode.from_dict(data["root"]),
            schema=CustomSchema.from_dict(schema_data) if schema_data is not None else None,
            extra=extra,
        )

    @cached_property
    def index(self) -> "NodeIndex":
        """Id lookup built once per document instance."""
        from node_index import NodeIndex

        return NodeIndex.build(self.root)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"version": self.version, "title": self.title}
        if self.schema is not None:
            out["schema"] = self.schema.to_dict()
        out["root"] = self.root.to_dict()
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class ParseError:
    line: int
    column: int
    message: str
    severity: Severity = "error"
    code: Optional[str] = None


@dataclass(frozen=True)
class SchemaError:
    path: str
    message: str
    value: Any = None
    code: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: tuple[SchemaError, ...] = ()

    @classmethod
    def from_errors(cls, errors: list[SchemaError]) -> "ValidationResult":
        return cls(valid=not errors, errors=tuple(errors))


@dataclass(frozen=True)
class ParseResult:
    document: Optional[MindmapDocument] = None
    errors: tuple[ParseError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.document is not None and not self.errors

    @property
    def is_empty(self) -> bool:
        """True for blank input: nothing to render, but nothing wrong either."""
        return self.document is None and not self.errors
