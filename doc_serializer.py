from __future__ import annotations

import json
import re
from typing import Optional, Union

import yaml

from node_models import Format, MindmapDocument

_INDENT_PATTERN = re.compile(r"^([ \t]+)\S", re.MULTILINE)
DEFAULT_JSON_INDENT = 2
YAML_LINE_WIDTH = 120


class MindmapYamlDumper(yaml.SafeDumper):
    """Block-style dumper that indents list items under their key."""

    def increase_indent(self, flow: bool = False, indentless: bool = False):
        return super().increase_indent(flow, False)


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


MindmapYamlDumper.add_representer(str, _represent_str)
MindmapYamlDumper.add_representer(tuple, yaml.SafeDumper.represent_list)


def _json_indent(previous_text: Optional[str]) -> Union[int, str]:
    """Reuse the indentation of the text being replaced, if it had any."""
    if not previous_text or not previous_text.lstrip().startswith(("{", "[")):
        return DEFAULT_JSON_INDENT
    match = _INDENT_PATTERN.search(previous_text)
    if not match:
        return DEFAULT_JSON_INDENT
    indent = match.group(1)
    if "\t" in indent:
        return "\t"
    return len(indent)


def _trailing_newline(previous_text: Optional[str]) -> str:
    if previous_text and not previous_text.endswith("\n"):
        return ""
    return "\n"


def to_json(document: MindmapDocument, previous_text: Optional[str] = None) -> str:
    body = json.dumps(document.to_dict(), indent=_json_indent(previous_text), ensure_ascii=False)
    return body + _trailing_newline(previous_text)


def to_yaml(document: MindmapDocument, previous_text: Optional[str] = None) -> str:
    body = yaml.dump(
        document.to_dict(),
        Dumper=MindmapYamlDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        indent=2,
        width=YAML_LINE_WIDTH,
    )
    if not _trailing_newline(previous_text):
        body = body.rstrip("\n")
    return body


def serialize(document: MindmapDocument, fmt: Format, previous_text: Optional[str] = None) -> str:
    """Render ``document`` as JSON or YAML text.

    Works for any structurally valid document, whether or not it passes
    schema validation. ``previous_text`` only steers cosmetic choices
    (JSON indentation, final newline).
    """
    if fmt == "json":
        return to_json(document, previous_text)
    if fmt == "yaml":
        return to_yaml(document, previous_text)
    raise ValueError(f"Unsupported format: {fmt!r}")
