"""Phase 1: collect declarations into per-scope entries.

Singular and plural annotation forms feed the same logical collection; a
plural form is flattened into one entry per element.  A container declared
with no elements at all is remembered as an explicit empty declaration,
which is not the same thing as no declaration.
"""

import logging
from typing import Any

from pydantic import BaseModel

from openapi_decl.declarations.defaults import strip_unset
from openapi_decl.declarations.records import Declaration, DeclarationSet, Kind

logger = logging.getLogger(__name__)

DEFINITION = "definition"
TAGS = "tags"
SERVERS = "servers"
SECURITY = "security"
SECURITY_SCHEMES = "security_schemes"
OPERATION = "operation"
PARAMETERS = "parameters"
REQUEST_BODY = "request_body"
RESPONSES = "responses"
CALLBACKS = "callbacks"
EXTERNAL_DOCS = "external_docs"
EXTENSIONS = "extensions"
SCHEMAS = "schemas"

# kind -> (collection, is plural form)
KIND_COLLECTIONS = {
    Kind.OPENAPI_DEFINITION: (DEFINITION, False),
    Kind.TAG: (TAGS, False),
    Kind.TAGS: (TAGS, True),
    Kind.SERVER: (SERVERS, False),
    Kind.SERVERS: (SERVERS, True),
    Kind.SECURITY_REQUIREMENT: (SECURITY, False),
    Kind.SECURITY_REQUIREMENTS: (SECURITY, True),
    Kind.SECURITY_REQUIREMENTS_SET: (SECURITY, False),
    Kind.SECURITY_REQUIREMENTS_SETS: (SECURITY, True),
    Kind.SECURITY_SCHEME: (SECURITY_SCHEMES, False),
    Kind.SECURITY_SCHEMES: (SECURITY_SCHEMES, True),
    Kind.OPERATION: (OPERATION, False),
    Kind.PARAMETER: (PARAMETERS, False),
    Kind.PARAMETERS: (PARAMETERS, True),
    Kind.REQUEST_BODY: (REQUEST_BODY, False),
    Kind.API_RESPONSE: (RESPONSES, False),
    Kind.API_RESPONSES: (RESPONSES, True),
    Kind.CALLBACK: (CALLBACKS, False),
    Kind.CALLBACKS: (CALLBACKS, True),
    Kind.EXTERNAL_DOCUMENTATION: (EXTERNAL_DOCS, False),
    Kind.EXTENSION: (EXTENSIONS, False),
    Kind.EXTENSIONS: (EXTENSIONS, True),
    Kind.SCHEMA: (SCHEMAS, False),
}


class Entry(BaseModel):
    """One element contributed to a logical collection by one declaration."""

    collection: str
    scope: str
    values: dict[str, Any]
    order: tuple[int, int]
    source: str


class ScopeEntries(BaseModel):
    """Everything one scope contributes, grouped by collection."""

    entries: dict[str, list[Entry]] = {}
    explicit_empty: set[str] = set()

    def get(self, collection: str) -> list[Entry]:
        return self.entries.get(collection, [])

    def declares(self, collection: str) -> bool:
        return bool(self.get(collection)) or collection in self.explicit_empty


def collect(declarations: DeclarationSet) -> dict[str, ScopeEntries]:
    """Group every declaration's elements by scope and collection."""
    collected = {scope.id: ScopeEntries() for scope in declarations.scopes}
    for position, declaration in enumerate(declarations.declarations):
        collection, plural = KIND_COLLECTIONS[declaration.kind]
        elements, empty = _expand(declaration, plural)
        scope_entries = collected[declaration.scope]
        if empty:
            scope_entries.explicit_empty.add(collection)
        for index, values in enumerate(elements):
            scope_entries.entries.setdefault(collection, []).append(
                Entry(
                    collection=collection,
                    scope=declaration.scope,
                    values=values,
                    order=(position, index),
                    source=declaration.source or f"{declaration.scope}:{declaration.kind.value}",
                )
            )
    logger.debug("Collected %d declarations over %d scopes", len(declarations), len(collected))
    return collected


def _expand(declaration: Declaration, plural: bool) -> tuple[list[dict], bool]:
    """Return the elements a declaration contributes and whether it is an explicit empty."""
    raw = declaration.values
    kind = declaration.kind

    if kind == Kind.TAGS:
        elements = [strip_unset(tag) for tag in raw.get("value") or []]
        elements += [{"ref": ref} for ref in raw.get("refs") or [] if ref]
        elements = [e for e in elements if e]
        return elements, not elements

    if kind == Kind.SECURITY_REQUIREMENT:
        values = strip_unset(raw)
        return ([{"requirements": [values]}] if values.get("name") else []), False

    if kind == Kind.SECURITY_REQUIREMENTS:
        requirements = [strip_unset(r) for r in raw.get("value") or []]
        sets = [{"requirements": [r]} for r in requirements if r.get("name")]
        return sets, not raw.get("value")

    if kind == Kind.SECURITY_REQUIREMENTS_SET:
        return [_requirement_set(raw)], False

    if kind == Kind.SECURITY_REQUIREMENTS_SETS:
        items = raw.get("value") or []
        return [_requirement_set(item) for item in items], not items

    if plural:
        items = raw.get("value") or []
        elements = [strip_unset(item) for item in items]
        return [e for e in elements if e], not items

    values = strip_unset(raw)
    if not values:
        # An annotation with every attribute left at its default.
        return [], kind == Kind.TAG
    return [values], False


def _requirement_set(raw: dict) -> dict:
    requirements = [strip_unset(r) for r in raw.get("value") or []]
    return {"requirements": [r for r in requirements if r.get("name")]}
