from openapi_decl.resolve.errors import BuildReport, DuplicateDefinitionError, UnresolvedReferenceError
from openapi_decl.resolve.merge import Definition, DocumentDraft, OperationDraft
from openapi_decl.resolve.references import (
    ReferenceRegistry,
    ReferenceResolver,
    is_complete,
    normalize_ref,
    resolve_references,
)


def _definition(kind: str, name: str, values: dict, order: int = 0) -> Definition:
    return Definition(kind=kind, name=name, values=values, source=f"decl{order}", order=(order,))


def _sealed(*definitions: Definition) -> tuple[ReferenceRegistry, BuildReport]:
    report = BuildReport()
    registry = ReferenceRegistry(report)
    for definition in definitions:
        registry.register(definition)
    registry.seal()
    return registry, report


class TestNormalizeRef:
    def test_short_name(self):
        assert normalize_ref("schemas", "User") == ("#/components/schemas/User", "User")

    def test_local_pointer(self):
        assert normalize_ref("security_schemes", "#/components/securitySchemes/auth") == (
            "#/components/securitySchemes/auth",
            "auth",
        )

    def test_external_ref_has_no_local_name(self):
        assert normalize_ref("schemas", "http://example.com/pet.json") == ("http://example.com/pet.json", None)

    def test_is_complete(self):
        assert not is_complete({"ref": "User"})
        assert not is_complete({"name": "User"})
        assert is_complete({"name": "User", "type": "object"})


class TestReferenceRegistry:
    def test_complete_definition_wins_over_ref(self):
        registry, report = _sealed(
            _definition("schemas", "User", {"ref": "User"}, order=0),
            _definition("schemas", "User", {"type": "object"}, order=1),
        )
        assert registry.resolved["schemas"]["User"] == {"type": "object"}
        assert len(report) == 0

    def test_identical_duplicates_coalesce(self):
        registry, report = _sealed(
            _definition("schemas", "User", {"type": "object"}, order=0),
            _definition("schemas", "User", {"type": "object"}, order=1),
        )
        assert registry.has_definition("schemas", "User")
        assert len(report) == 0

    def test_differing_duplicates_are_fatal(self):
        _, report = _sealed(
            _definition("schemas", "User", {"type": "object"}, order=0),
            _definition("schemas", "User", {"type": "string"}, order=1),
        )
        errors = report.of_type(DuplicateDefinitionError)
        assert len(errors) == 1
        assert errors[0].sources == ["decl0", "decl1"]
        assert report.fatal

    def test_ref_only_bucket_becomes_placeholder(self):
        registry, report = _sealed(
            _definition("security_schemes", "auth", {"ref": "#/components/securitySchemes/auth"})
        )
        assert registry.placeholders["security_schemes"]["auth"] == {"ref": "#/components/securitySchemes/auth"}
        assert not registry.has_definition("security_schemes", "auth")
        assert len(report.of_type(UnresolvedReferenceError)) == 1

    def test_ref_only_tag_adds_no_tag(self):
        registry, report = _sealed(_definition("tags", "user", {"ref": "user"}))
        assert registry.tags == []
        assert len(report) == 0

    def test_tag_ref_precedence(self):
        registry, _ = _sealed(
            _definition("tags", "user", {"ref": "user"}, order=0),
            _definition("tags", "user", {"name": "user", "description": "D"}, order=1),
        )
        assert registry.tags == [{"name": "user", "description": "D"}]


class TestReferenceResolver:
    def test_ref_site_keeps_overrides_and_keys(self):
        registry, report = _sealed(_definition("responses", "NotFound", {"description": "Not found"}))
        resolver = ReferenceResolver(registry, report)
        site = resolver.element(
            "response",
            {"ref": "NotFound", "response_code": "404", "description": "Missing pet", "headers": [{"name": "X"}]},
            "GET /pets/responses/404",
        )
        assert site == {"ref": "#/components/responses/NotFound", "description": "Missing pet", "response_code": "404"}
        assert len(report) == 0

    def test_unresolved_ref_kept_and_reported(self):
        registry, report = _sealed()
        resolver = ReferenceResolver(registry, report)
        site = resolver.element("schema", {"ref": "Pet"}, "here")
        assert site == {"ref": "#/components/schemas/Pet"}
        errors = report.of_type(UnresolvedReferenceError)
        assert errors[0].ref == "#/components/schemas/Pet"
        assert not errors[0].fatal

    def test_implementation_becomes_ref(self):
        registry, report = _sealed(_definition("schemas", "Pet", {"type": "object"}))
        resolver = ReferenceResolver(registry, report)
        assert resolver.element("schema", {"implementation": "com.example.Pet"}, "here") == {
            "ref": "#/components/schemas/Pet"
        }

    def test_array_implementation_becomes_items_ref(self):
        registry, report = _sealed(_definition("schemas", "Pet", {"type": "object"}))
        resolver = ReferenceResolver(registry, report)
        resolved = resolver.element("schema", {"type": "array", "implementation": "Pet", "min_items": 2}, "here")
        assert resolved == {"type": "array", "min_items": 2, "items": {"ref": "#/components/schemas/Pet"}}

    def test_nested_ref_sites_rewritten(self):
        registry, report = _sealed(_definition("headers", "Max-Rate", {"description": "Rate"}))
        resolver = ReferenceResolver(registry, report)
        resolved = resolver.element(
            "response",
            {"content": [{"encoding": [{"name": "pw", "headers": [{"name": "Max-Rate", "ref": "Max-Rate"}]}]}]},
            "here",
        )
        header = resolved["content"][0]["encoding"][0]["headers"][0]
        assert header == {"ref": "#/components/headers/Max-Rate", "name": "Max-Rate"}

    def test_unknown_security_scheme_reported(self):
        registry, report = _sealed(_definition("security_schemes", "auth", {"type": "http"}))
        resolver = ReferenceResolver(registry, report)
        resolver.security([{"requirements": [{"name": "auth"}, {"name": "other"}]}], "security")
        assert [e.ref for e in report.of_type(UnresolvedReferenceError)] == ["other"]


class TestResolveReferences:
    def _draft(self, *operations: OperationDraft, definitions=()) -> DocumentDraft:
        return DocumentDraft(operations=list(operations), definitions=list(definitions))

    def test_duplicate_operation_id(self):
        draft = self._draft(
            OperationDraft(scope="a", path="/pets", method="get", values={"operation_id": "pets"}),
            OperationDraft(scope="b", path="/pets", method="post", values={"operation_id": "pets"}),
        )
        report = BuildReport()
        resolve_references(draft, report)
        errors = report.of_type(DuplicateDefinitionError)
        assert [(e.kind, e.name) for e in errors] == [("operationId", "pets")]

    def test_duplicate_route(self):
        draft = self._draft(
            OperationDraft(scope="a", path="/pets", method="get"),
            OperationDraft(scope="b", path="/pets", method="get"),
        )
        report = BuildReport()
        resolve_references(draft, report)
        assert report.of_type(DuplicateDefinitionError)[0].name == "GET /pets"

    def test_link_operation_id_checked(self):
        link = {"name": "next", "operation_id": "missing"}
        draft = self._draft(
            OperationDraft(
                scope="a",
                path="/pets",
                method="get",
                values={"operation_id": "listPets"},
                responses={"200": {"response_code": "200", "links": [link, {"name": "self", "operation_id": "listPets"}]}},
            )
        )
        report = BuildReport()
        resolve_references(draft, report)
        assert [e.ref for e in report.of_type(UnresolvedReferenceError)] == ["missing"]

    def test_draft_not_mutated(self):
        operation = OperationDraft(scope="a", path="/pets", method="get", parameters=[{"name": "p", "schema": {"ref": "Pet"}}])
        draft = self._draft(operation, definitions=[_definition("schemas", "Pet", {"type": "object"})])
        resolved = resolve_references(draft, BuildReport())
        assert draft.operations[0].parameters[0]["schema"] == {"ref": "Pet"}
        assert resolved.document.operations[0].parameters[0]["schema"] == {"ref": "#/components/schemas/Pet"}
        assert resolved.components["schemas"]["Pet"] == {"type": "object"}

    def test_tags_rewritten_to_names(self):
        draft = self._draft(
            OperationDraft(scope="a", path="/pets", method="get", tags=[{"ref": "pets"}, {"name": "animals"}]),
            definitions=[
                _definition("tags", "pets", {"name": "pets", "description": "Pets"}),
                _definition("tags", "animals", {"name": "animals"}, order=1),
            ],
        )
        resolved = resolve_references(draft, BuildReport())
        assert resolved.document.operations[0].tags == [{"name": "pets"}, {"name": "animals"}]
        assert [t["name"] for t in resolved.tags] == ["pets", "animals"]
