"""Phase 3: merge entries by precedence.

Rules:

* Entries of one collection within one scope are concatenated; entries with
  the same identity key are merged, the later one's fields overlaying the
  earlier one's.  Extension lists from such entries are concatenated, so a
  clash between them surfaces when the extensions are folded.
* An inner scope (method) overlays an outer one (class, then package)
  field by field; an unset field never overrides a set one.  Extensions
  are overlaid key-wise, inner keys winning.
* Tags, parameters, responses and callbacks are unioned along the scope
  chain.  An explicit empty container on a scope stops inheritance from
  the scopes above it.
* Security and servers are taken wholesale from the nearest scope that
  declares them.
"""

import logging
from typing import Any, Callable, Hashable

from pydantic import BaseModel

from openapi_decl.declarations.defaults import OPAQUE
from openapi_decl.declarations.records import DeclarationSet, Scope, ScopeLevel

from .collect import (
    CALLBACKS,
    DEFINITION,
    EXTENSIONS,
    EXTERNAL_DOCS,
    OPERATION,
    PARAMETERS,
    REQUEST_BODY,
    RESPONSES,
    SCHEMAS,
    SECURITY,
    SECURITY_SCHEMES,
    SERVERS,
    TAGS,
    Entry,
    ScopeEntries,
)

logger = logging.getLogger(__name__)

COMPONENT_SECTIONS = (
    "schemas",
    "responses",
    "parameters",
    "examples",
    "request_bodies",
    "headers",
    "security_schemes",
    "links",
    "callbacks",
)

REQUEST_BODY_TARGET = "request_body"


class Definition(BaseModel):
    """A named declaration competing for one registry slot."""

    kind: str
    name: str
    values: dict[str, Any]
    source: str
    order: tuple[int, ...]


class OperationDraft(BaseModel):
    scope: str
    path: str
    method: str
    values: dict[str, Any] = {}
    tags: list[dict] = []
    parameters: list[dict] = []
    request_body: dict | None = None
    responses: dict[str, dict] = {}
    callbacks: list[dict] = []
    security: list[dict] | None = None
    servers: list[dict] | None = None
    external_docs: dict | None = None
    extensions: list[dict] = []
    consumes: list[str] = []
    produces: list[str] = []


class DocumentDraft(BaseModel):
    definition: dict[str, Any] = {}
    tags: list[dict] = []
    servers: list[dict] = []
    security: list[dict] | None = None
    extensions: list[dict] = []
    operations: list[OperationDraft] = []
    definitions: list[Definition] = []


def overlay(base: dict, top: dict, same_level: bool = False) -> dict:
    """Overlay ``top``'s set fields onto ``base``, recursing into nested elements."""
    merged = dict(base)
    for key, value in top.items():
        current = merged.get(key)
        if key == EXTENSIONS and isinstance(value, list):
            merged[key] = merge_extension_lists(current or [], value, same_level)
        elif key not in OPAQUE and isinstance(current, dict) and isinstance(value, dict):
            merged[key] = overlay(current, value, same_level)
        else:
            merged[key] = value
    return merged


def merge_extension_lists(base: list[dict], top: list[dict], same_level: bool) -> list[dict]:
    if same_level:
        return base + top
    names = {e.get("name") for e in top}
    return top + [e for e in base if e.get("name") not in names]


def merge_keyed(groups: list[list[dict]], key_fn: Callable[[dict], Hashable | None]) -> dict:
    """Merge per-scope groups (outermost first) into one map keyed by identity."""
    merged: dict = {}
    for group in groups:
        level: dict = {}
        for values in group:
            key = key_fn(values)
            if key is None:
                logger.warning("Ignoring element without identity: %s", values)
                continue
            level[key] = overlay(level[key], values, same_level=True) if key in level else dict(values)
        for key, values in level.items():
            merged[key] = overlay(merged[key], values) if key in merged else values
    return merged


def merge_single(groups: list[list[dict]]) -> dict | None:
    """Overlay every element of every group into one element."""
    merged = None
    for group in groups:
        level = None
        for values in group:
            level = dict(values) if level is None else overlay(level, values, same_level=True)
        if level is not None:
            merged = level if merged is None else overlay(merged, level)
    return merged


def merge_extensions(groups: list[list[dict]]) -> list[dict]:
    merged: list[dict] = []
    for group in groups:
        if group:
            merged = merge_extension_lists(merged, list(group), same_level=False)
    return merged


def is_complete(values: dict) -> bool:
    """A declaration is complete when it supplies content beyond its ref and name."""
    if values.get("ref"):
        return False
    return any(key not in ("name",) for key in values)


def join_path(segments: list[str]) -> str:
    parts = [segment.strip("/") for segment in segments if segment and segment.strip("/")]
    return "/" + "/".join(parts)


def tag_key(values: dict) -> str | None:
    return values.get("name") or values.get("ref")


def response_key(values: dict) -> str:
    return str(values.get("response_code") or "default")


def parameter_key(values: dict) -> tuple | None:
    if values.get("ref"):
        return ("ref", values["ref"])
    if not values.get("name"):
        return None
    return (values["name"], values.get("in"))


def name_key(values: dict) -> str | None:
    return values.get("name") or values.get("ref")


def server_key(values: dict) -> str | None:
    return values.get("url")


def requirement_set_key(values: dict) -> tuple:
    return tuple(
        (r.get("name"), tuple(r.get("scopes") or ())) for r in values.get("requirements", [])
    )


def infer_location(values: dict, path: str) -> dict:
    """Fill in a parameter's location; path parameters are always required."""
    if values.get("ref"):
        return values
    values = dict(values)
    location = values.get("in")
    if location is None:
        location = "path" if "{%s}" % values.get("name") in path else "query"
    values["in"] = str(location).lower()
    if values["in"] == "path":
        values["required"] = True
    return values


class ScopeMerger:
    """Turns the visible entries of one declaration set into a DocumentDraft."""

    def __init__(self, declarations: DeclarationSet, visible: dict[str, ScopeEntries]):
        self.declarations = declarations
        self.visible = visible

    def merge(self) -> DocumentDraft:
        draft = self._document()
        for scope in self.declarations.method_scopes():
            if scope.id not in self.visible or not scope.http_method:
                continue
            draft.operations.append(self._operation(scope))
        draft.definitions.extend(self._registrations())
        logger.info(
            "Merged %d operations and %d named definitions", len(draft.operations), len(draft.definitions)
        )
        return draft

    def _chain(self, scope_id: str) -> tuple[list[Scope], list[ScopeEntries]]:
        chain = self.declarations.chain(scope_id)
        return chain, [self.visible[s.id] for s in chain]

    def _document(self) -> DocumentDraft:
        draft = DocumentDraft()
        groups = []
        for scope in self._scopes_by_level():
            entries = self.visible[scope.id].get(DEFINITION)
            if not entries:
                continue
            group = []
            for entry in entries:
                values = dict(entry.values)
                self._split_definition(values, entry, draft)
                group.append(values)
            groups.append(group)
        draft.definition = merge_single(groups) or {}
        draft.extensions = draft.definition.pop(EXTENSIONS, [])
        return draft

    def _split_definition(self, values: dict, entry: Entry, draft: DocumentDraft) -> None:
        """Move the list-valued parts of a definition into the draft."""
        for index, tag in enumerate(values.pop("tags", [])):
            draft.tags.append(tag)
            if tag_key(tag):
                draft.definitions.append(
                    Definition(kind=TAGS, name=tag_key(tag), values=tag, source=entry.source, order=entry.order + (index,))
                )
        for server in values.pop("servers", []):
            if server_key(server) not in {server_key(s) for s in draft.servers}:
                draft.servers.append(server)

        sets = [{"requirements": [r]} for r in values.pop("security", []) if r.get("name")]
        sets += [
            {"requirements": [r for r in s.get("value", []) if r.get("name")]}
            for s in values.pop("security_sets", [])
        ]
        if sets:
            existing = draft.security or []
            seen = {requirement_set_key(s) for s in existing}
            draft.security = existing + [s for s in sets if requirement_set_key(s) not in seen]

        components = values.pop("components", {})
        for section in COMPONENT_SECTIONS:
            for index, item in enumerate(components.get(section, [])):
                item = dict(item)
                name = self._component_name(section, item)
                if not name:
                    logger.warning("Ignoring unnamed %s entry in %s", section, entry.source)
                    continue
                draft.definitions.append(
                    Definition(kind=section, name=name, values=item, source=entry.source, order=entry.order + (index,))
                )

    @staticmethod
    def _component_name(section: str, item: dict) -> str | None:
        if section == SECURITY_SCHEMES:
            name = item.pop("security_scheme_name", None) or item.pop("name", None)
        else:
            name = item.pop("name", None)
        return name or _ref_name(item.get("ref"))

    def _scopes_by_level(self) -> list[Scope]:
        rank = {ScopeLevel.PACKAGE: 0, ScopeLevel.CLASS: 1, ScopeLevel.METHOD: 2}
        scopes = [s for s in self.declarations.scopes if s.id in self.visible]
        return sorted(scopes, key=lambda s: rank[s.level])

    def _operation(self, scope: Scope) -> OperationDraft:
        chain, chain_entries = self._chain(scope.id)
        path = join_path([s.path for s in chain])
        draft = OperationDraft(
            scope=scope.id,
            path=path,
            method=scope.http_method.lower(),
            consumes=_nearest_media(chain, "consumes"),
            produces=_nearest_media(chain, "produces"),
        )

        # Extensions on an operation declaration sit at that declaration's scope level.
        operation_groups = _groups(chain_entries, OPERATION)
        extension_groups = _groups(chain_entries, EXTENSIONS)
        for level, group in enumerate(operation_groups):
            for values in group:
                extension_groups[level] = extension_groups[level] + list(values.get(EXTENSIONS, []))

        draft.values = merge_single(operation_groups) or {}
        draft.values.pop(EXTENSIONS, None)
        draft.external_docs = merge_single(_groups(chain_entries, EXTERNAL_DOCS))
        draft.request_body = merge_single(_groups(chain_entries, REQUEST_BODY))
        draft.extensions = merge_extensions(extension_groups)

        draft.tags = list(merge_keyed(_inherited(chain_entries, TAGS), tag_key).values())
        draft.responses = merge_keyed(_inherited(chain_entries, RESPONSES), response_key)
        draft.callbacks = list(merge_keyed(_inherited(chain_entries, CALLBACKS), name_key).values())

        parameter_groups = [
            [infer_location(p, path) for p in group] for group in _inherited(chain_entries, PARAMETERS)
        ]
        draft.parameters = list(merge_keyed(parameter_groups, parameter_key).values())

        security = _nearest(chain_entries, SECURITY)
        if security is not None:
            draft.security = list(merge_keyed([security], requirement_set_key).values())
        servers = _nearest(chain_entries, SERVERS)
        if servers:
            draft.servers = list(merge_keyed([servers], server_key).values())

        self._attach_target_schemas(draft, chain_entries[-1].get(SCHEMAS))
        return draft

    def _attach_target_schemas(self, draft: OperationDraft, entries: list[Entry]) -> None:
        """Attach method-level schemas to the request body or a parameter."""
        for entry in entries:
            schema = dict(entry.values)
            target = schema.pop("target", REQUEST_BODY_TARGET)
            location = schema.pop("in", None)
            schema.pop("name", None)
            if target == REQUEST_BODY_TARGET:
                body = dict(draft.request_body or {})
                content = body.get("content") or [{}]
                body["content"] = [
                    {**item, "schema": overlay(item.get("schema", {}), schema)} for item in content
                ]
                draft.request_body = body
                continue

            for index, parameter in enumerate(draft.parameters):
                if parameter.get("name") == target and (location is None or parameter.get("in") == location):
                    draft.parameters[index] = {
                        **parameter,
                        "schema": overlay(parameter.get("schema", {}), schema),
                    }
                    break
            else:
                parameter = {"name": target, "schema": schema}
                if location:
                    parameter["in"] = location
                draft.parameters.append(infer_location(parameter, draft.path))

    def _registrations(self) -> list[Definition]:
        """Named definitions declared directly on scopes."""
        registrations = []
        for scope in self.declarations.scopes:
            scope_entries = self.visible.get(scope.id)
            if scope_entries is None:
                continue
            for entry in scope_entries.get(SECURITY_SCHEMES):
                values = dict(entry.values)
                name = values.pop("security_scheme_name", None) or _ref_name(values.get("ref"))
                if not name:
                    logger.warning("Ignoring security scheme without a name (%s)", entry.source)
                    continue
                registrations.append(
                    Definition(kind=SECURITY_SCHEMES, name=name, values=values, source=entry.source, order=entry.order)
                )
            registrations.extend(self._tag_registrations(scope, scope_entries))
            if scope.level == ScopeLevel.METHOD:
                continue
            for entry in scope_entries.get(SCHEMAS):
                values = dict(entry.values)
                values.pop("target", None)
                name = values.pop("name", None) or scope.short_name
                registrations.append(
                    Definition(kind=SCHEMAS, name=name, values=values, source=entry.source, order=entry.order)
                )
        return registrations

    def _tag_registrations(self, scope: Scope, scope_entries: ScopeEntries) -> list[Definition]:
        """One registration per tag name and scope.

        A complete tag that overrides a complete tag of an enclosing scope only
        affects the operations below it and is not registered again.
        """
        registrations = []
        merged: dict[str, Definition] = {}
        for entry in scope_entries.get(TAGS):
            name = tag_key(entry.values)
            if not name:
                logger.warning("Ignoring tag without a name or ref (%s)", entry.source)
                continue
            if entry.values.get("ref"):
                registrations.append(
                    Definition(kind=TAGS, name=name, values=entry.values, source=entry.source, order=entry.order)
                )
            elif name in merged:
                first = merged[name]
                merged[name] = first.model_copy(update={"values": overlay(first.values, entry.values, same_level=True)})
            else:
                merged[name] = Definition(
                    kind=TAGS, name=name, values=dict(entry.values), source=entry.source, order=entry.order
                )

        if merged:
            inherited = self._ancestor_tags(scope)
            for name, definition in merged.items():
                if name in inherited and is_complete(definition.values):
                    logger.debug("Tag %s in %s overrides an enclosing tag", name, scope.id)
                    continue
                registrations.append(definition)
        return registrations

    def _ancestor_tags(self, scope: Scope) -> set[str]:
        """Names of the complete tags declared by the scopes enclosing ``scope``."""
        names = set()
        for ancestor in self.declarations.chain(scope.id)[:-1]:
            scope_entries = self.visible.get(ancestor.id)
            if scope_entries is None:
                continue
            tags = [e.values for e in scope_entries.get(TAGS)]
            tags += [tag for e in scope_entries.get(DEFINITION) for tag in e.values.get("tags", [])]
            names.update(tag_key(tag) for tag in tags if not tag.get("ref") and is_complete(tag))
        return names


def _groups(chain_entries: list[ScopeEntries], collection: str) -> list[list[dict]]:
    return [[e.values for e in scope_entries.get(collection)] for scope_entries in chain_entries]


def _inherited(chain_entries: list[ScopeEntries], collection: str) -> list[list[dict]]:
    """Per-scope groups, starting at the innermost scope with an explicit empty container."""
    start = 0
    for index, scope_entries in enumerate(chain_entries):
        if collection in scope_entries.explicit_empty:
            start = index
    return _groups(chain_entries[start:], collection)


def _nearest(chain_entries: list[ScopeEntries], collection: str) -> list[dict] | None:
    for scope_entries in reversed(chain_entries):
        if scope_entries.declares(collection):
            return [e.values for e in scope_entries.get(collection)]
    return None


def _nearest_media(chain: list[Scope], attribute: str) -> list[str]:
    for scope in reversed(chain):
        if getattr(scope, attribute):
            return list(getattr(scope, attribute))
    return []


def _ref_name(ref: str | None) -> str | None:
    if not ref:
        return None
    return ref.rsplit("/", 1)[-1]
