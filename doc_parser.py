from __future__ import annotations

import json
import logging
from pathlib import PurePath
from typing import Any, Callable, Optional

import yaml

from node_models import Format, MindmapDocument, ParseError, ParseResult

logger = logging.getLogger(__name__)

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"

Position = tuple[int, int]
PosPath = tuple[Any, ...]

# Known optional node keys whose shape the model relies on.
_NODE_FIELD_SHAPES: tuple[tuple[str, str, Callable[[Any], bool]], ...] = (
    ("collapsed", "true or false", lambda value: isinstance(value, bool)),
    ("customFields", "a mapping", lambda value: isinstance(value, dict)),
    ("tags", "a list of strings", lambda value: isinstance(value, list) and all(isinstance(tag, str) for tag in value)),
    ("links", "a list of URLs or link mappings", lambda value: isinstance(value, list) and all(isinstance(link, (str, dict)) for link in value)),
)


class MindmapYamlLoader(yaml.SafeLoader):
    """SafeLoader that leaves ISO dates as strings so values stay JSON-compatible."""


MindmapYamlLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _is_blank(text: str) -> bool:
    return not text or not text.strip()


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _json_syntax_error(exc: json.JSONDecodeError) -> ParseError:
    return ParseError(
        line=exc.lineno or 1,
        column=exc.colno or 1,
        message=f"JSON syntax error: {exc.msg}",
        code="JSON_SYNTAX_ERROR",
    )


def _yaml_syntax_error(exc: yaml.YAMLError) -> ParseError:
    mark = getattr(exc, "problem_mark", None) or getattr(exc, "context_mark", None)
    line = mark.line + 1 if mark is not None else 1
    column = mark.column + 1 if mark is not None else 1
    reason = getattr(exc, "problem", None) or str(exc)
    return ParseError(
        line=line,
        column=column,
        message=f"YAML syntax error: {reason}",
        code="YAML_SYNTAX_ERROR",
    )


def _load(text: str, fmt: Format) -> Any:
    if fmt == "json":
        return json.loads(text)
    return yaml.load(text, Loader=MindmapYamlLoader)


def _node_positions(text: str) -> dict[PosPath, Position]:
    """Map key paths to 1-based (line, column) using a YAML compose pass.

    Most JSON documents are valid YAML flow mappings, so the same pass
    locates nodes for both formats. Returns an empty map when the text
    cannot be composed.
    """
    try:
        composed = yaml.compose(text, Loader=MindmapYamlLoader)
    except yaml.YAMLError:
        return {}
    positions: dict[PosPath, Position] = {}
    if composed is None:
        return positions
    stack: list[tuple[yaml.Node, PosPath]] = [(composed, ())]
    while stack:
        node, path = stack.pop()
        positions[path] = (node.start_mark.line + 1, node.start_mark.column + 1)
        if isinstance(node, yaml.MappingNode):
            for key_node, value_node in node.value:
                stack.append((value_node, path + (key_node.value,)))
        elif isinstance(node, yaml.SequenceNode):
            for offset, item in enumerate(node.value):
                stack.append((item, path + (offset,)))
    return positions


class _StructureChecker:
    """Accumulates every structural problem instead of stopping at the first."""

    def __init__(self, positions: dict[PosPath, Position]) -> None:
        self.positions = positions
        self.errors: list[ParseError] = []

    def _error(self, pos_path: PosPath, message: str, code: str) -> None:
        line, column = self._locate(pos_path)
        self.errors.append(ParseError(line=line, column=column, message=message, code=code))

    def _locate(self, pos_path: PosPath) -> Position:
        # Fall back to the closest located ancestor.
        while pos_path:
            if pos_path in self.positions:
                return self.positions[pos_path]
            pos_path = pos_path[:-1]
        return self.positions.get((), (1, 1))

    def check_document(self, data: Any) -> list[ParseError]:
        if not isinstance(data, dict):
            self._error((), "Document must be a mapping with 'version', 'title' and 'root'", "INVALID_DOCUMENT")
            return self.errors
        for key in ("version", "title", "root"):
            if data.get(key) is None:
                self._error((), f"Missing required field '{key}'", "MISSING_FIELD")
        schema = data.get("schema")
        if schema is not None and not isinstance(schema, dict):
            self._error(("schema",), "'schema' must be a mapping", "INVALID_SCHEMA")
        root = data.get("root")
        if root is not None:
            self.check_node(root, "root", ("root",))
        return self.errors

    def check_node(self, node: Any, path: str, pos_path: PosPath) -> None:
        if not isinstance(node, dict):
            self._error(pos_path, f"Node at {path} must be a mapping", "INVALID_NODE")
            return
        node_id = node.get("id")
        if node_id is None:
            self._error(pos_path, f"Node at {path} is missing required field 'id'", "MISSING_NODE_ID")
        elif not _non_empty_str(node_id):
            self._error(pos_path + ("id",), f"Node at {path} has an invalid 'id' (must be a non-empty string)", "MISSING_NODE_ID")
        title = node.get("title")
        if title is None:
            self._error(pos_path, f"Node at {path} is missing required field 'title'", "MISSING_NODE_TITLE")
        elif not _non_empty_str(title):
            self._error(pos_path + ("title",), f"Node at {path} has an invalid 'title' (must be a non-empty string)", "MISSING_NODE_TITLE")
        self.check_field_shapes(node, path, pos_path)

        children = node.get("children")
        if children is None:
            return
        if not isinstance(children, list):
            self._error(pos_path + ("children",), f"'children' of node at {path} must be a list", "INVALID_CHILDREN")
            return
        for offset, child in enumerate(children):
            self.check_node(child, f"{path}.children[{offset}]", pos_path + ("children", offset))

    def check_field_shapes(self, node: dict[str, Any], path: str, pos_path: PosPath) -> None:
        for key, expected, fits in _NODE_FIELD_SHAPES:
            value = node.get(key)
            if value is not None and not fits(value):
                self._error(pos_path + (key,), f"'{key}' of node at {path} must be {expected}", "INVALID_NODE_FIELD")


def check_structure(data: Any, text: str = "") -> list[ParseError]:
    """Return every structural problem of an already loaded document."""
    positions = _node_positions(text) if text else {}
    return _StructureChecker(positions).check_document(data)


def parse(text: str, fmt: Format) -> ParseResult:
    """Parse raw JSON or YAML text into a ``MindmapDocument``.

    Never raises for bad input: syntax and structure problems come back
    as ``ParseError`` entries. Blank text yields an empty result, which
    callers treat as "nothing to render".
    """
    if fmt not in ("json", "yaml"):
        raise ValueError(f"Unsupported format: {fmt!r}")
    if _is_blank(text):
        return ParseResult()

    try:
        data = _load(text, fmt)
    except json.JSONDecodeError as exc:
        logger.debug("JSON syntax error at %s:%s: %s", exc.lineno, exc.colno, exc.msg)
        return ParseResult(errors=(_json_syntax_error(exc),))
    except yaml.YAMLError as exc:
        logger.debug("YAML syntax error: %s", exc)
        return ParseResult(errors=(_yaml_syntax_error(exc),))

    errors = check_structure(data, text)
    if errors:
        logger.debug("Rejected document with %d structural error(s)", len(errors))
        return ParseResult(errors=tuple(errors))
    return ParseResult(document=MindmapDocument.from_dict(data))


def detect_format(text: str, filename: Optional[str] = None) -> Optional[Format]:
    """Guess the format from a file name, then from the text itself."""
    if filename:
        suffix = PurePath(filename).suffix.lower()
        if suffix == ".json":
            return "json"
        if suffix in (".yaml", ".yml"):
            return "yaml"

    stripped = text.strip()
    if not stripped:
        return None
    if stripped[0] in "{[":
        try:
            json.loads(stripped)
            return "json"
        except json.JSONDecodeError:
            pass
    try:
        loaded = yaml.load(stripped, Loader=MindmapYamlLoader)
    except yaml.YAMLError:
        return None
    return "yaml" if isinstance(loaded, (dict, list)) else None
