from openapi_decl.declarations.records import DeclarationSet
from openapi_decl.resolve.collect import SECURITY_SCHEMES, TAGS, collect
from openapi_decl.resolve.merge import (
    ScopeMerger,
    infer_location,
    join_path,
    merge_keyed,
    overlay,
    response_key,
)
from openapi_decl.resolve.visibility import apply_hidden_filter


def _resource() -> DeclarationSet:
    decls = DeclarationSet()
    decls.add_scope("app", "package")
    decls.add_scope("app.Pets", "class", "app", path="/pets", produces=["application/json"])
    decls.add_scope("app.Pets.get", "method", "app.Pets", http_method="GET", path="/{petId}")
    decls.add_scope("app.Pets.helper", "method", "app.Pets")
    return decls


def _merge(decls: DeclarationSet):
    return ScopeMerger(decls, apply_hidden_filter(collect(decls), decls)).merge()


def _operation(decls: DeclarationSet, scope_id: str = "app.Pets.get"):
    return next(op for op in _merge(decls).operations if op.scope == scope_id)


class TestOverlay:
    def test_top_fields_win_and_base_fields_survive(self):
        base = {"description": "OK", "content": {"schema": {"type": "object", "format": "x"}}}
        top = {"description": "Updated", "content": {"schema": {"type": "array"}}}
        assert overlay(base, top) == {
            "description": "Updated",
            "content": {"schema": {"type": "array", "format": "x"}},
        }

    def test_opaque_values_replaced_whole(self):
        assert overlay({"example": {"a": 1}}, {"example": {"b": 2}}) == {"example": {"b": 2}}

    def test_extensions_across_levels_overlay_by_key(self):
        base = {"extensions": [{"name": "x-a", "value": "outer"}, {"name": "x-b", "value": "outer"}]}
        top = {"extensions": [{"name": "x-a", "value": "inner"}]}
        merged = overlay(base, top)
        assert merged["extensions"] == [{"name": "x-a", "value": "inner"}, {"name": "x-b", "value": "outer"}]

    def test_extensions_at_same_level_concatenate(self):
        base = {"extensions": [{"name": "x-a", "value": "1"}]}
        top = {"extensions": [{"name": "x-a", "value": "2"}]}
        merged = overlay(base, top, same_level=True)
        assert len(merged["extensions"]) == 2


class TestMergeKeyed:
    def test_inner_group_overrides_outer_per_key(self):
        outer = [{"response_code": "200", "description": "OK"}, {"response_code": "400", "description": "Bad"}]
        inner = [{"response_code": "200", "description": "Updated"}]
        merged = merge_keyed([outer, inner], response_key)
        assert merged["200"]["description"] == "Updated"
        assert merged["400"]["description"] == "Bad"
        assert list(merged) == ["200", "400"]

    def test_inputs_not_mutated(self):
        outer = [{"response_code": "200", "description": "OK"}]
        inner = [{"response_code": "200", "headers": [{"name": "X-Rate"}]}]
        merge_keyed([outer, inner], response_key)
        assert outer == [{"response_code": "200", "description": "OK"}]


class TestPathsAndLocations:
    def test_join_path(self):
        assert join_path(["", "/pets/", "{petId}"]) == "/pets/{petId}"
        assert join_path(["", "", ""]) == "/"

    def test_infer_path_parameter(self):
        assert infer_location({"name": "petId"}, "/pets/{petId}") == {"name": "petId", "in": "path", "required": True}

    def test_infer_query_parameter(self):
        assert infer_location({"name": "limit"}, "/pets/{petId}") == {"name": "limit", "in": "query"}

    def test_explicit_location_normalized(self):
        assert infer_location({"name": "X-Trace", "in": "HEADER"}, "/pets")["in"] == "header"


class TestScopeMerger:
    def test_method_response_overrides_class_response(self):
        decls = _resource()
        decls.declare("app.Pets", "api_response", {"response_code": "200", "description": "OK"})
        decls.declare("app.Pets.get", "api_response", {"response_code": "200", "description": "Updated"})

        op = _operation(decls)
        assert op.responses["200"]["description"] == "Updated"
        assert op.path == "/pets/{petId}"
        assert op.method == "get"
        assert op.produces == ["application/json"]

    def test_method_scope_without_http_method_skipped(self):
        decls = _resource()
        assert [op.scope for op in _merge(decls).operations] == ["app.Pets.get"]

    def test_explicit_empty_responses_block_inheritance(self):
        decls = _resource()
        decls.declare("app.Pets", "api_response", {"response_code": "400", "description": "Bad"})
        decls.declare("app.Pets.get", "api_responses", {"value": []})
        assert _operation(decls).responses == {}

    def test_empty_tag_blocks_class_tags(self):
        decls = _resource()
        decls.declare("app.Pets", "tag", {"name": "pets"})
        decls.declare("app.Pets.get", "tag", {})
        assert _operation(decls).tags == []

    def test_parameters_union_with_inferred_location(self):
        decls = _resource()
        decls.declare("app.Pets", "parameter", {"name": "X-Trace", "in": "header"})
        decls.declare("app.Pets.get", "parameter", {"name": "petId", "description": "Pet id"})
        parameters = _operation(decls).parameters
        assert [(p["name"], p["in"]) for p in parameters] == [("X-Trace", "header"), ("petId", "path")]
        assert parameters[1]["required"] is True

    def test_security_from_nearest_scope_wholesale(self):
        decls = _resource()
        decls.declare("app.Pets", "security_requirement", {"name": "classKey"})
        decls.declare("app.Pets.get", "security_requirement", {"name": "methodKey"})
        security = _operation(decls).security
        assert security == [{"requirements": [{"name": "methodKey"}]}]

    def test_explicit_empty_security(self):
        decls = _resource()
        decls.declare("app.Pets", "security_requirement", {"name": "classKey"})
        decls.declare("app.Pets.get", "security_requirements", {"value": []})
        assert _operation(decls).security == []

    def test_no_security_declared_inherits_document(self):
        decls = _resource()
        assert _operation(decls).security is None

    def test_operation_values_overlay(self):
        decls = _resource()
        decls.declare("app.Pets", "operation", {"deprecated": True, "summary": "Pets"})
        decls.declare("app.Pets.get", "operation", {"operation_id": "getPet", "summary": "Get pet"})
        assert _operation(decls).values == {"deprecated": True, "summary": "Get pet", "operation_id": "getPet"}

    def test_target_schema_attaches_to_parameter(self):
        decls = _resource()
        decls.declare("app.Pets.get", "parameter", {"name": "petId"})
        decls.declare("app.Pets.get", "schema", {"target": "petId", "type": "integer", "format": "int64"})
        parameter = _operation(decls).parameters[0]
        assert parameter["schema"] == {"type": "integer", "format": "int64"}

    def test_untargeted_schema_applies_to_request_body(self):
        decls = _resource()
        decls.declare("app.Pets.get", "schema", {"implementation": "Pet"})
        body = _operation(decls).request_body
        assert body == {"content": [{"schema": {"implementation": "Pet"}}]}

    def test_class_schema_registers_component(self):
        decls = _resource()
        decls.add_scope("app.Pet", "class", "app")
        decls.declare("app.Pet", "schema", {"type": "object"})
        definitions = [d for d in _merge(decls).definitions if d.kind == "schemas"]
        assert [(d.name, d.values) for d in definitions] == [("Pet", {"type": "object"})]

    def test_security_scheme_and_tag_registrations(self):
        decls = _resource()
        decls.declare("app.Pets", "security_scheme", {"security_scheme_name": "petKey", "type": "API_KEY"})
        decls.declare("app.Pets.get", "tag", {"ref": "pets"})
        definitions = {(d.kind, d.name): d.values for d in _merge(decls).definitions}
        assert definitions[(SECURITY_SCHEMES, "petKey")] == {"type": "API_KEY"}
        assert definitions[(TAGS, "pets")] == {"ref": "pets"}

    def test_definition_split(self):
        decls = _resource()
        decls.declare("app", "openapi_definition", {
            "info": {"title": "Pets", "version": "2.0"},
            "tags": [{"name": "pets", "description": "Pet operations"}],
            "servers": [{"url": "https://pets.example.com"}],
            "security": [{"name": "petKey"}],
            "security_sets": [{"value": []}],
            "components": {"schemas": [{"name": "Pet", "type": "object"}]},
            "extensions": [{"name": "x-team", "value": "pets"}],
        })
        draft = _merge(decls)
        assert draft.definition == {"info": {"title": "Pets", "version": "2.0"}}
        assert draft.tags == [{"name": "pets", "description": "Pet operations"}]
        assert draft.servers == [{"url": "https://pets.example.com"}]
        assert draft.security == [{"requirements": [{"name": "petKey"}]}, {"requirements": []}]
        assert draft.extensions == [{"name": "x-team", "value": "pets"}]
        assert {(d.kind, d.name) for d in draft.definitions} == {("tags", "pets"), ("schemas", "Pet")}
