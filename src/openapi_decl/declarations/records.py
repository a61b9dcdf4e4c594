"""Declaration records: the input every document build starts from.

A discovery front end (a scanner, a code generator, a YAML file or plain
registration calls) describes the annotated source as a set of scopes and
the declarations made on them.  Nothing here knows how they were found.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel


class ScopeLevel(str, Enum):
    PACKAGE = "package"
    CLASS = "class"
    METHOD = "method"


class Kind(str, Enum):
    """Annotation kinds, singular and plural forms."""

    OPENAPI_DEFINITION = "openapi_definition"
    TAG = "tag"
    TAGS = "tags"
    SERVER = "server"
    SERVERS = "servers"
    SECURITY_REQUIREMENT = "security_requirement"
    SECURITY_REQUIREMENTS = "security_requirements"
    SECURITY_REQUIREMENTS_SET = "security_requirements_set"
    SECURITY_REQUIREMENTS_SETS = "security_requirements_sets"
    SECURITY_SCHEME = "security_scheme"
    SECURITY_SCHEMES = "security_schemes"
    OPERATION = "operation"
    PARAMETER = "parameter"
    PARAMETERS = "parameters"
    REQUEST_BODY = "request_body"
    API_RESPONSE = "api_response"
    API_RESPONSES = "api_responses"
    CALLBACK = "callback"
    CALLBACKS = "callbacks"
    EXTERNAL_DOCUMENTATION = "external_documentation"
    EXTENSION = "extension"
    EXTENSIONS = "extensions"
    SCHEMA = "schema"


class Scope(BaseModel):
    """A declaring scope: a package, a class or a method."""

    id: str
    level: ScopeLevel
    parent: str | None = None
    path: str = ""
    http_method: str | None = None
    consumes: list[str] = []
    produces: list[str] = []

    @property
    def short_name(self) -> str:
        return self.id.rsplit(".", 1)[-1]


class Declaration(BaseModel):
    """One annotation instance on one scope.

    ``values`` holds only the fields the annotation set; ``order`` is the
    source ordering key used wherever first-seen order matters.
    """

    scope: str
    kind: Kind
    values: dict[str, Any] = {}
    order: int = 0
    source: str = ""

    def sort_key(self) -> tuple:
        return (
            self.order,
            self.source,
            self.scope,
            self.kind.value,
            json.dumps(self.values, sort_keys=True, default=str),
        )


class DeclarationSet:
    """Exclusively-owned collection of scopes and declarations for one build."""

    def __init__(self):
        self._scopes: dict[str, Scope] = {}
        self._declarations: list[Declaration] = []

    def add_scope(self, scope_id: str, level: ScopeLevel | str, parent: str | None = None, **fields) -> Scope:
        """Register a scope. Parents must be registered first."""
        if scope_id in self._scopes:
            raise ValueError(f"Scope {scope_id!r} is already registered")
        if parent is not None and parent not in self._scopes:
            raise ValueError(f"Scope {scope_id!r} names unknown parent {parent!r}")
        scope = Scope(id=scope_id, level=level, parent=parent, **fields)
        self._scopes[scope_id] = scope
        return scope

    def add(self, declaration: Declaration) -> Declaration:
        if declaration.scope not in self._scopes:
            raise ValueError(f"Declaration {declaration.kind.value!r} names unknown scope {declaration.scope!r}")
        self._declarations.append(declaration)
        return declaration

    def declare(
        self,
        scope_id: str,
        kind: Kind | str,
        values: dict[str, Any] | None = None,
        order: int | None = None,
        source: str = "",
    ) -> Declaration:
        """Record one annotation instance; ``order`` defaults to insertion position."""
        if order is None:
            order = len(self._declarations)
        return self.add(
            Declaration(scope=scope_id, kind=kind, values=values or {}, order=order, source=source)
        )

    def scope(self, scope_id: str) -> Scope:
        return self._scopes[scope_id]

    @property
    def scopes(self) -> list[Scope]:
        return list(self._scopes.values())

    @property
    def declarations(self) -> list[Declaration]:
        """Declarations in deterministic source order, whatever the insertion order."""
        return sorted(self._declarations, key=Declaration.sort_key)

    def chain(self, scope_id: str) -> list[Scope]:
        """Return the scope and its ancestors, outermost first."""
        chain = []
        seen = set()
        current: str | None = scope_id
        while current is not None:
            if current in seen:
                raise ValueError(f"Scope {scope_id!r} has a cyclic parent chain")
            seen.add(current)
            scope = self._scopes[current]
            chain.append(scope)
            current = scope.parent
        chain.reverse()
        return chain

    def method_scopes(self) -> list[Scope]:
        return [s for s in self._scopes.values() if s.level == ScopeLevel.METHOD]

    def __len__(self) -> int:
        return len(self._declarations)
