"""
Tests for writing documents back out as JSON and YAML.

Tests cover:
    - Stable key order
    - Parse/serialize round-trips in both formats
    - Formatting hints taken from the previous text
    - YAML block style
"""

import json

import pytest

from doc_parser import parse
from doc_serializer import serialize, to_json, to_yaml
from node_models import CustomSchema
from schema_validator import validate
from tests.conftest import SCHEMA_DATA, SIMPLE_JSON
from tree_mutator import set_custom_field, update_fields


# ============================================================
# KEY ORDER
# ============================================================

class TestKeyOrder:

    def test_document_keys(self):
        text = json.dumps({"extraKey": 1, "root": {"id": "r", "title": "R"}, "title": "T", "version": "1.0"})
        data = json.loads(serialize(parse(text, "json").document, "json"))
        assert list(data) == ["version", "title", "root", "extraKey"]

        schema_doc = parse(
            json.dumps({"version": "1.0", "title": "T", "root": {"id": "r", "title": "R"}, "schema": SCHEMA_DATA}),
            "json",
        ).document
        assert list(json.loads(serialize(schema_doc, "json"))) == ["version", "title", "schema", "root"]

    def test_node_keys(self, plan_document, fixed_clock):
        document = update_fields(
            plan_document,
            "api",
            {"description": "d", "status": "todo", "tags": ["x"], "deadline": "2024-06-01"},
            now=fixed_clock,
        )
        api = json.loads(serialize(document, "json"))["root"]["children"][1]["children"][0]
        assert list(api) == [
            "id",
            "title",
            "description",
            "status",
            "tags",
            "customFields",
            "updatedAt",
            "deadline",
            "children",
        ]

    def test_children_always_written(self, simple_document):
        data = json.loads(serialize(simple_document, "json"))
        assert data["root"]["children"] == []
        assert "collapsed" not in data["root"]
        assert "tags" not in data["root"]


# ============================================================
# ROUND TRIPS
# ============================================================

class TestRoundTrip:

    @pytest.mark.parametrize("fmt", ["json", "yaml"])
    def test_parse_serialize_parse(self, plan_document, fmt):
        text = serialize(plan_document, fmt)
        again = parse(text, fmt)
        assert again.ok
        assert again.document == plan_document

    def test_unknown_keys_survive(self):
        text = (
            '{"version":"1.0","title":"T","settings":{"theme":"dark"},'
            '"root":{"id":"root","title":"R","color":"#f00","links":[{"url":"https://example.com","title":"Ex"}]}}'
        )
        document = parse(text, "json").document
        again = parse(serialize(document, "yaml"), "yaml").document
        assert again == document
        assert again.extra == {"settings": {"theme": "dark"}}
        assert again.root.links[0].url == "https://example.com"

    def test_non_conformant_document_still_serializes(self, plan_document):
        schema = CustomSchema.from_dict(SCHEMA_DATA)
        broken = set_custom_field(plan_document, "api", "priority", "urgent")
        assert not validate(broken, schema).valid
        for fmt in ("json", "yaml"):
            assert "urgent" in serialize(broken, fmt)

    def test_unknown_format(self, simple_document):
        with pytest.raises(ValueError):
            serialize(simple_document, "xml")


# ============================================================
# FORMATTING HINTS
# ============================================================

class TestFormatting:

    def test_default_json_indent_and_newline(self, simple_document):
        text = to_json(simple_document)
        assert text.startswith('{\n  "version"')
        assert text.endswith("}\n")

    def test_json_indent_follows_previous_text(self, simple_document):
        previous = '{\n    "version": "1.0"\n}\n'
        assert serialize(simple_document, "json", previous).startswith('{\n    "version"')

    def test_json_tab_indent(self, simple_document):
        previous = '{\n\t"version": "1.0"\n}'
        text = serialize(simple_document, "json", previous)
        assert text.startswith('{\n\t"version"')
        assert not text.endswith("\n")

    def test_compact_previous_text_falls_back(self, simple_document):
        assert serialize(simple_document, "json", SIMPLE_JSON).startswith('{\n  "version"')

    def test_non_ascii_is_kept(self, simple_document, fixed_clock):
        document = update_fields(simple_document, "root", {"title": "アイデア"}, now=fixed_clock)
        assert "アイデア" in to_json(document)
        assert "アイデア" in to_yaml(document)

    def test_yaml_block_style(self, plan_document):
        text = to_yaml(plan_document)
        assert text.startswith("version: '1.0'\ntitle: Plan\nroot:\n  id: root\n")
        assert "\n    - id: design\n" in text
        assert "{" not in text
        assert text.endswith("\n")

    def test_yaml_multiline_literal(self, simple_document, fixed_clock):
        document = update_fields(simple_document, "root", {"description": "line one\nline two"}, now=fixed_clock)
        text = to_yaml(document)
        assert "description: |" in text
        assert parse(text, "yaml").document.root.description == "line one\nline two"

    def test_yaml_without_trailing_newline(self, simple_document):
        text = serialize(simple_document, "yaml", "version: '1.0'")
        assert not text.endswith("\n")
