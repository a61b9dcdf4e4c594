import json
from pathlib import Path

import pytest

from openapi_decl.declarations.loader import detect_format, load_declarations, parse_declarations
from openapi_decl.declarations.records import Kind

FIXTURES = Path(__file__).parent / "fixtures"


class TestDetectFormat:
    def test_yaml_fixture(self):
        assert detect_format(FIXTURES / "airlines.yaml") == "yaml"

    def test_json_by_suffix(self, tmp_path):
        f = tmp_path / "decls.json"
        f.write_text("{}")
        assert detect_format(f) == "json"

    def test_json_by_leading_brace(self, tmp_path):
        f = tmp_path / "decls.txt"
        f.write_text('  {"scopes": []}')
        assert detect_format(f) == "json"


class TestLoadDeclarations:
    def test_load_airlines(self):
        decls = load_declarations(FIXTURES / "airlines.yaml")
        assert len(decls.scopes) == 13
        assert len(decls.method_scopes()) == 10
        resource = decls.scope("airlines.UserResource")
        assert resource.path == "/user"
        assert resource.produces == ["application/json", "application/xml"]

    def test_order_and_source_from_position(self):
        decls = load_declarations(FIXTURES / "airlines.yaml")
        first = decls.declarations[0]
        assert first.kind == Kind.OPENAPI_DEFINITION
        assert first.order == 0
        assert first.source == "airlines.yaml#declarations[0]"

    def test_load_json(self, tmp_path):
        f = tmp_path / "decls.json"
        f.write_text(json.dumps({
            "scopes": [{"id": "app", "level": "package"}],
            "declarations": [{"scope": "app", "kind": "tag", "values": {"name": "pets"}, "order": 7}],
        }))
        decls = load_declarations(f)
        assert len(decls) == 1
        assert decls.declarations[0].order == 7

    def test_non_mapping_rejected(self, tmp_path):
        f = tmp_path / "decls.yaml"
        f.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="expected a mapping"):
            load_declarations(f)

    def test_parse_without_source(self):
        decls = parse_declarations({
            "scopes": [{"id": "app", "level": "package"}],
            "declarations": [{"scope": "app", "kind": "tags", "values": None}],
        })
        assert decls.declarations[0].values == {}
        assert decls.declarations[0].source == "declarations[0]"
