"""
Tests for turning raw JSON/YAML text into documents.

Tests cover:
    - Successful parses in both formats
    - Blank input sentinel
    - Syntax error positions
    - Accumulated structural errors
    - Format detection
"""

import pytest

from doc_parser import check_structure, detect_format, parse
from schema_validator import validate
from tests.conftest import PLAN_YAML, SIMPLE_JSON


# ============================================================
# SUCCESSFUL PARSES
# ============================================================

class TestParseSuccess:

    def test_minimal_json_document(self):
        result = parse(SIMPLE_JSON, "json")
        assert result.ok
        document = result.document
        assert document.version == "1.0"
        assert document.title == "T"
        assert document.root.id == "root"
        assert document.root.title == "R"
        assert document.root.children == ()
        assert len(document.index) == 1
        assert validate(document, None).valid

    def test_yaml_document_tree(self):
        result = parse(PLAN_YAML, "yaml")
        assert result.ok
        root = result.document.root
        assert [child.id for child in root.children] == ["design", "build"]
        design = root.children[0]
        assert design.tags == ("ux", "research")
        assert design.custom_fields == {"priority": "medium", "estimate": 5}
        assert root.children[1].collapsed is True
        assert design.children[0].id == "wireframes"

    def test_yaml_dates_stay_strings(self):
        text = (
            "version: '1.0'\ntitle: T\nroot:\n  id: root\n  title: R\n"
            "  createdAt: 2024-01-01\n  customFields:\n    due: 2024-02-03\n"
        )
        result = parse(text, "yaml")
        assert result.ok
        assert result.document.root.created_at == "2024-01-01"
        assert result.document.root.custom_fields["due"] == "2024-02-03"

    def test_unknown_keys_are_kept(self):
        text = (
            '{"version":"1.0","title":"T","author":"me",'
            '"root":{"id":"root","title":"R","color":"#fff","children":[]}}'
        )
        document = parse(text, "json").document
        assert document.extra == {"author": "me"}
        assert document.root.extra == {"color": "#fff"}

    def test_embedded_schema_is_loaded(self):
        text = (
            '{"version":"1.0","title":"T","schema":{"version":"1.0","customFields":'
            '[{"name":"owner","label":"Owner","type":"string"}]},'
            '"root":{"id":"root","title":"R"}}'
        )
        document = parse(text, "json").document
        assert document.schema is not None
        assert document.schema.custom_fields[0].name == "owner"

    def test_duplicate_ids_are_not_parse_errors(self):
        text = (
            '{"version":"1.0","title":"T","root":{"id":"root","title":"R","children":'
            '[{"id":"a","title":"A"},{"id":"a","title":"B"}]}}'
        )
        result = parse(text, "json")
        assert result.ok
        assert result.document.index.duplicates == ["a"]


# ============================================================
# BLANK INPUT
# ============================================================

class TestBlankInput:

    @pytest.mark.parametrize("text", ["", "   ", "\n\t\n"])
    def test_blank_text_is_empty_not_error(self, text):
        for fmt in ("json", "yaml"):
            result = parse(text, fmt)
            assert result.is_empty
            assert not result.ok
            assert result.errors == ()

    def test_unknown_format_is_a_programming_error(self):
        with pytest.raises(ValueError):
            parse(SIMPLE_JSON, "toml")


# ============================================================
# SYNTAX ERRORS
# ============================================================

class TestSyntaxErrors:

    def test_json_error_position(self):
        text = '{\n  "version": "1.0",\n  "title": ,\n  "root": {}\n}'
        result = parse(text, "json")
        assert result.document is None
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.code == "JSON_SYNTAX_ERROR"
        assert error.severity == "error"
        assert (error.line, error.column) == (3, 12)
        assert error.message.startswith("JSON syntax error")

    def test_yaml_error_position(self):
        text = "version: '1.0'\ntitle: a: b\nroot: {}\n"
        result = parse(text, "yaml")
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.code == "YAML_SYNTAX_ERROR"
        assert error.line == 2
        assert error.column >= 1

    def test_json_text_parsed_as_yaml_works(self):
        # JSON is close enough to YAML flow style for the YAML path.
        assert parse(SIMPLE_JSON, "yaml").ok


# ============================================================
# STRUCTURAL ERRORS
# ============================================================

class TestStructuralErrors:

    def test_missing_root_id_is_one_error(self):
        text = '{"version":"1.0","title":"T","root":{"title":"R","children":[]}}'
        result = parse(text, "json")
        assert result.document is None
        assert len(result.errors) == 1
        assert result.errors[0].code == "MISSING_NODE_ID"
        assert "'id'" in result.errors[0].message

    def test_two_missing_titles_are_two_errors(self):
        text = (
            '{"version":"1.0","title":"T","root":{"id":"root","title":"R","children":'
            '[{"id":"a"},{"id":"b","title":"B","children":[{"id":"c","title":"C"}]},{"id":"d"}]}}'
        )
        result = parse(text, "json")
        assert len(result.errors) == 2
        assert all(error.code == "MISSING_NODE_TITLE" for error in result.errors)
        messages = " ".join(error.message for error in result.errors)
        assert "root.children[0]" in messages
        assert "root.children[2]" in messages

    def test_missing_top_level_fields_accumulate(self):
        result = parse('{"title": "T"}', "json")
        codes = [error.code for error in result.errors]
        assert codes == ["MISSING_FIELD", "MISSING_FIELD"]

    def test_top_level_must_be_mapping(self):
        result = parse("[1, 2, 3]", "json")
        assert [error.code for error in result.errors] == ["INVALID_DOCUMENT"]

    def test_children_must_be_list(self):
        text = "version: '1.0'\ntitle: T\nroot:\n  id: root\n  title: R\n  children: nope\n"
        result = parse(text, "yaml")
        assert [error.code for error in result.errors] == ["INVALID_CHILDREN"]
        assert result.errors[0].line == 6

    def test_child_must_be_mapping(self):
        text = "version: '1.0'\ntitle: T\nroot:\n  id: root\n  title: R\n  children:\n    - just text\n"
        result = parse(text, "yaml")
        assert [error.code for error in result.errors] == ["INVALID_NODE"]

    def test_blank_id_is_rejected(self):
        text = '{"version":"1.0","title":"T","root":{"id":"  ","title":"R"}}'
        result = parse(text, "json")
        assert [error.code for error in result.errors] == ["MISSING_NODE_ID"]

    def test_wrongly_typed_node_fields_are_reported(self):
        text = (
            '{"version":"1.0","title":"T","root":{"id":"root","title":"R","children":['
            '{"id":"a","title":"A","collapsed":"false","customFields":[1,2],"tags":"x","links":"https://x"}]}}'
        )
        result = parse(text, "json")
        assert result.document is None
        assert [error.code for error in result.errors] == ["INVALID_NODE_FIELD"] * 4
        assert result.errors[0].message.startswith("'collapsed' of node at root.children[0]")

    def test_non_string_tags_point_at_the_field(self):
        text = "version: '1.0'\ntitle: T\nroot:\n  id: root\n  title: R\n  tags: [1, ux]\n"
        result = parse(text, "yaml")
        assert [error.code for error in result.errors] == ["INVALID_NODE_FIELD"]
        assert result.errors[0].line == 6

    def test_schema_must_be_mapping(self):
        text = '{"version":"1.0","title":"T","schema":"none","root":{"id":"root","title":"R"}}'
        assert [error.code for error in parse(text, "json").errors] == ["INVALID_SCHEMA"]

    def test_structural_error_points_at_node(self):
        text = (
            "version: '1.0'\n"
            "title: T\n"
            "root:\n"
            "  id: root\n"
            "  title: R\n"
            "  children:\n"
            "    - id: a\n"
            "      title: A\n"
            "    - id: b\n"
        )
        result = parse(text, "yaml")
        assert len(result.errors) == 1
        assert result.errors[0].line == 9

    def test_check_structure_without_text_defaults_to_first_position(self):
        errors = check_structure({"version": "1", "title": "T", "root": {"id": "r"}})
        assert len(errors) == 1
        assert (errors[0].line, errors[0].column) == (1, 1)


# ============================================================
# FORMAT DETECTION
# ============================================================

class TestDetectFormat:

    @pytest.mark.parametrize(
        "filename, expected",
        [("map.json", "json"), ("map.yaml", "yaml"), ("MAP.YML", "yaml")],
    )
    def test_by_extension(self, filename, expected):
        assert detect_format("", filename) == expected

    def test_by_content(self):
        assert detect_format(SIMPLE_JSON) == "json"
        assert detect_format(PLAN_YAML) == "yaml"

    def test_unrecognised(self):
        assert detect_format("") is None
        assert detect_format("just a sentence") is None
        assert detect_format("a: b: c") is None
