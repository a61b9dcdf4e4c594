"""Phase 4: reconcile named definitions and rewrite ref sites.

Every named declaration lands in a bucket keyed by (kind, name).  Within a
bucket at most one distinct complete definition may exist; ref-only and
name-only members add nothing.  Buckets are sealed before any ref site is
rewritten, so the outcome never depends on the order sources were scanned.
"""

import logging
from collections import defaultdict

from pydantic import BaseModel

from .collect import TAGS
from .errors import BuildReport, DuplicateDefinitionError, UnresolvedReferenceError
from .merge import Definition, DocumentDraft, is_complete

logger = logging.getLogger(__name__)

SECTION_POINTERS = {
    "schemas": "schemas",
    "responses": "responses",
    "parameters": "parameters",
    "examples": "examples",
    "request_bodies": "requestBodies",
    "headers": "headers",
    "security_schemes": "securitySchemes",
    "links": "links",
    "callbacks": "callbacks",
}

# element kind -> the Components section its refs point into
ELEMENT_SECTIONS = {
    "schema": "schemas",
    "response": "responses",
    "parameter": "parameters",
    "example": "examples",
    "request_body": "request_bodies",
    "header": "headers",
    "security_scheme": "security_schemes",
    "link": "links",
    "callback": "callbacks",
}
SECTION_ELEMENTS = {section: kind for kind, section in ELEMENT_SECTIONS.items()}

# element kind -> {field: nested element kind}
CHILDREN = {
    "schema": {
        "properties": "schema",
        "items": "schema",
        "all_of": "schema",
        "any_of": "schema",
        "one_of": "schema",
        "not": "schema",
        "additional_properties": "schema",
    },
    "parameter": {"schema": "schema", "content": "media_type", "examples": "example"},
    "header": {"schema": "schema"},
    "media_type": {"schema": "schema", "examples": "example", "encoding": "encoding"},
    "encoding": {"headers": "header"},
    "request_body": {"content": "media_type"},
    "response": {"content": "media_type", "headers": "header", "links": "link"},
    "callback": {"operations": "callback_operation"},
    "callback_operation": {"parameters": "parameter", "request_body": "request_body", "responses": "response"},
}

# Fields a ref site may carry next to its ref.
OVERRIDE_FIELDS = ("name", "description")
# Fields that only key the element inside its parent map.
KEY_FIELDS = ("response_code", "media_type")


class ResolvedDraft(BaseModel):
    document: DocumentDraft
    components: dict[str, dict[str, dict]] = {}
    tags: list[dict] = []


def normalize_ref(section: str, ref: str) -> tuple[str, str | None]:
    """Return the JSON pointer for ``ref`` and its local name (None when external)."""
    prefix = f"#/components/{SECTION_POINTERS[section]}/"
    if ref.startswith(prefix):
        return ref, ref[len(prefix):]
    if any(marker in ref for marker in ("/", "#", ":")):
        return ref, None
    return prefix + ref, ref


class ReferenceRegistry:
    """Buckets of named definitions for one build."""

    def __init__(self, report: BuildReport):
        self.report = report
        self._buckets: dict[tuple[str, str], list[Definition]] = defaultdict(list)
        self.resolved: dict[str, dict[str, dict]] = defaultdict(dict)
        self.placeholders: dict[str, dict[str, dict]] = defaultdict(dict)
        self.tags: list[dict] = []
        self.operation_ids: set[str] = set()

    def register(self, definition: Definition) -> None:
        name = definition.name
        ref = definition.values.get("ref")
        if ref and definition.kind == TAGS:
            name = ref.rsplit("/", 1)[-1]
        elif ref:
            _, local = normalize_ref(definition.kind, ref)
            name = local or name
        self._buckets[(definition.kind, name)].append(definition)

    def seal(self) -> None:
        """Pick the single complete definition of every bucket."""
        buckets = sorted(self._buckets.items(), key=lambda item: min(d.order for d in item[1]))
        for (kind, name), members in buckets:
            members = sorted(members, key=lambda d: d.order)
            complete = [d for d in members if is_complete(d.values)]
            distinct = []
            for definition in complete:
                if all(definition.values != other.values for other in distinct):
                    distinct.append(definition)

            if len(distinct) > 1:
                self.report.add(DuplicateDefinitionError(kind, name, [d.source for d in distinct]))
                continue

            if kind == TAGS:
                self._seal_tag(name, members, distinct)
            elif distinct:
                self.resolved[kind][name] = {k: v for k, v in distinct[0].values.items() if k != "name"}
            else:
                pointer, _ = normalize_ref(kind, members[0].values.get("ref") or name)
                self.placeholders[kind][name] = {"ref": pointer}
                self.report.add(UnresolvedReferenceError(SECTION_ELEMENTS[kind], pointer, f"components/{kind}/{name}"))

    def _seal_tag(self, name: str, members: list[Definition], distinct: list[Definition]) -> None:
        if distinct:
            self.tags.append({**distinct[0].values, "name": name})
        elif any(not d.values.get("ref") for d in members):
            self.tags.append({"name": name})

    def has_tag(self, name: str) -> bool:
        return any(tag["name"] == name for tag in self.tags)

    def has_definition(self, section: str, name: str | None) -> bool:
        return name is not None and name in self.resolved.get(section, {})


class ReferenceResolver:
    """Rewrites ref sites against a sealed registry."""

    def __init__(self, registry: ReferenceRegistry, report: BuildReport):
        self.registry = registry
        self.report = report

    def element(self, kind: str, values: dict, location: str) -> dict:
        values = dict(values)
        if kind == "schema":
            values = _implementation_to_ref(values)

        section = ELEMENT_SECTIONS.get(kind)
        ref = values.get("ref")
        if ref and section:
            return self._ref_site(kind, section, values, location)

        if kind == "link" and values.get("operation_id"):
            if values["operation_id"] not in self.registry.operation_ids:
                self.report.add(UnresolvedReferenceError("operation", values["operation_id"], location))

        for field, child_kind in CHILDREN.get(kind, {}).items():
            child = values.get(field)
            if isinstance(child, dict):
                values[field] = self.element(child_kind, child, f"{location}/{field}")
            elif isinstance(child, list):
                values[field] = [
                    self.element(child_kind, item, f"{location}/{field}/{_item_label(item, index)}")
                    if isinstance(item, dict)
                    else item
                    for index, item in enumerate(child)
                ]
        return values

    def tag_name(self, values: dict, location: str) -> str:
        if values.get("ref"):
            name = values["ref"].rsplit("/", 1)[-1]
            if not self.registry.has_tag(name):
                self.report.add(UnresolvedReferenceError("tag", values["ref"], location))
            return name
        return values["name"]

    def security(self, sets: list[dict], location: str) -> None:
        """Report requirements naming a scheme the document does not define."""
        for requirement_set in sets:
            for requirement in requirement_set.get("requirements", []):
                name = requirement["name"]
                if not self.registry.has_definition("security_schemes", name):
                    self.report.add(UnresolvedReferenceError("security_scheme", name, location))

    def _ref_site(self, kind: str, section: str, values: dict, location: str) -> dict:
        pointer, name = normalize_ref(section, values["ref"])
        kept = {k: values[k] for k in OVERRIDE_FIELDS + KEY_FIELDS if k in values}
        ignored = sorted(set(values) - set(kept) - {"ref"})
        if ignored:
            logger.debug("%s: ignoring %s next to ref %s", location, ", ".join(ignored), pointer)
        if not self.registry.has_definition(section, name):
            self.report.add(UnresolvedReferenceError(kind, pointer, location))
        return {"ref": pointer, **kept}


def resolve_references(draft: DocumentDraft, report: BuildReport) -> ResolvedDraft:
    """Seal the registry, check operation identity and rewrite every ref site."""
    draft = draft.model_copy(deep=True)
    registry = ReferenceRegistry(report)
    _check_operations(draft, registry, report)

    for definition in draft.definitions:
        registry.register(definition)
    registry.seal()

    resolver = ReferenceResolver(registry, report)
    for operation in draft.operations:
        where = f"{operation.method.upper()} {operation.path}"
        operation.tags = [{"name": resolver.tag_name(tag, f"{where}/tags")} for tag in operation.tags]
        operation.parameters = [
            resolver.element("parameter", p, f"{where}/parameters/{_item_label(p, i)}")
            for i, p in enumerate(operation.parameters)
        ]
        if operation.request_body is not None:
            operation.request_body = resolver.element("request_body", operation.request_body, f"{where}/requestBody")
        operation.responses = {
            code: resolver.element("response", response, f"{where}/responses/{code}")
            for code, response in operation.responses.items()
        }
        operation.callbacks = [
            resolver.element("callback", callback, f"{where}/callbacks/{_item_label(callback, i)}")
            for i, callback in enumerate(operation.callbacks)
        ]
        if operation.security:
            resolver.security(operation.security, f"{where}/security")

    for tag in draft.tags:
        if tag.get("ref"):
            resolver.tag_name(tag, "tags")
    if draft.security:
        resolver.security(draft.security, "security")

    components: dict[str, dict[str, dict]] = {}
    for section in SECTION_POINTERS:
        entries = {}
        for name, values in registry.resolved.get(section, {}).items():
            entries[name] = resolver.element(SECTION_ELEMENTS[section], values, f"components/{section}/{name}")
        entries.update(registry.placeholders.get(section, {}))
        if entries:
            components[section] = entries

    return ResolvedDraft(document=draft, components=components, tags=registry.tags)


def _check_operations(draft: DocumentDraft, registry: ReferenceRegistry, report: BuildReport) -> None:
    by_id: dict[str, list[str]] = defaultdict(list)
    by_route: dict[str, list[str]] = defaultdict(list)
    for operation in draft.operations:
        by_route[f"{operation.method.upper()} {operation.path}"].append(operation.scope)
        operation_id = operation.values.get("operation_id")
        if operation_id:
            by_id[operation_id].append(operation.scope)

    for operation_id, scopes in by_id.items():
        if len(scopes) > 1:
            report.add(DuplicateDefinitionError("operationId", operation_id, scopes))
    for route, scopes in by_route.items():
        if len(scopes) > 1:
            report.add(DuplicateDefinitionError("operation", route, scopes))
    registry.operation_ids.update(by_id)


def _implementation_to_ref(values: dict) -> dict:
    """``implementation`` names a component schema; arrays reference it from ``items``."""
    implementation = values.pop("implementation", None)
    if not implementation or values.get("ref"):
        return values
    name = str(implementation).rsplit(".", 1)[-1]
    if str(values.get("type", "")).lower() == "array":
        items = dict(values.get("items") or {})
        items.setdefault("ref", name)
        values["items"] = items
    else:
        values["ref"] = name
    return values


def _item_label(item: dict, index: int) -> str:
    return str(item.get("name") or item.get("media_type") or item.get("response_code") or index)
