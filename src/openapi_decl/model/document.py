"""Immutable OpenAPI document model.

Every node the resolution pipeline produces is one of the models below.
Field names are snake_case; the camelCase (and ``$ref``/``in``/``enum``)
aliases are what an emitter should write.  Fields that a declaration never
set stay ``None`` so that ``model_dump(exclude_none=True)`` only carries
what was declared.
"""

from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import (
    HttpMethod,
    ParameterIn,
    ParameterStyle,
    SchemaType,
    SecuritySchemeIn,
    SecuritySchemeType,
)


class OpenApiModel(BaseModel):
    """Base for all document nodes: frozen, camelCase aliases, no extra keys."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


class ExternalDocumentation(OpenApiModel):
    description: str | None = None
    url: str | None = None
    extensions: dict[str, Any] = {}


class Contact(OpenApiModel):
    name: str | None = None
    url: str | None = None
    email: str | None = None
    extensions: dict[str, Any] = {}


class License(OpenApiModel):
    name: str | None = None
    url: str | None = None
    extensions: dict[str, Any] = {}


class Info(OpenApiModel):
    title: str
    version: str
    description: str | None = None
    terms_of_service: str | None = None
    contact: Contact | None = None
    license: License | None = None
    extensions: dict[str, Any] = {}


class ServerVariable(OpenApiModel):
    enumeration: list[str] | None = Field(None, alias="enum")
    default_value: str | None = Field(None, alias="default")
    description: str | None = None
    extensions: dict[str, Any] = {}


class Server(OpenApiModel):
    url: str
    description: str | None = None
    variables: dict[str, ServerVariable] | None = None
    extensions: dict[str, Any] = {}


class Tag(OpenApiModel):
    name: str
    description: str | None = None
    external_docs: ExternalDocumentation | None = None
    extensions: dict[str, Any] = {}


class Discriminator(OpenApiModel):
    property_name: str
    mapping: dict[str, str] | None = None


class Schema(OpenApiModel):
    """Recursive type descriptor.

    When ``ref`` is set the node is a reference; only ``description`` may
    accompany it.
    """

    ref: str | None = Field(None, alias="$ref")
    type: SchemaType | None = None
    format: str | None = None
    title: str | None = None
    description: str | None = None
    default_value: Any = Field(None, alias="default")
    enumeration: list[Any] | None = Field(None, alias="enum")
    multiple_of: float | None = None
    maximum: float | None = None
    exclusive_maximum: bool | None = None
    minimum: float | None = None
    exclusive_minimum: bool | None = None
    max_length: int | None = None
    min_length: int | None = None
    pattern: str | None = None
    max_items: int | None = None
    min_items: int | None = None
    unique_items: bool | None = None
    max_properties: int | None = None
    min_properties: int | None = None
    required: list[str] | None = None
    properties: dict[str, "Schema"] | None = None
    additional_properties: "Schema | bool | None" = None
    items: "Schema | None" = None
    all_of: list["Schema"] | None = None
    any_of: list["Schema"] | None = None
    one_of: list["Schema"] | None = None
    not_: "Schema | None" = Field(None, alias="not")
    nullable: bool | None = None
    read_only: bool | None = None
    write_only: bool | None = None
    deprecated: bool | None = None
    example: Any = None
    discriminator: Discriminator | None = None
    external_docs: ExternalDocumentation | None = None
    extensions: dict[str, Any] = {}


class Example(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    summary: str | None = None
    description: str | None = None
    value: Any = None
    external_value: str | None = None
    extensions: dict[str, Any] = {}


class Header(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    description: str | None = None
    required: bool | None = None
    deprecated: bool | None = None
    allow_empty_value: bool | None = None
    schema_: Schema | None = Field(None, alias="schema")
    extensions: dict[str, Any] = {}


class Encoding(OpenApiModel):
    content_type: str | None = None
    headers: dict[str, Header] | None = None
    style: ParameterStyle | None = None
    explode: bool | None = None
    allow_reserved: bool | None = None
    extensions: dict[str, Any] = {}


class MediaType(OpenApiModel):
    schema_: Schema | None = Field(None, alias="schema")
    example: Any = None
    examples: dict[str, Example] | None = None
    encoding: dict[str, Encoding] | None = None
    extensions: dict[str, Any] = {}


class Parameter(OpenApiModel):
    """One parameter; ``(name, location)`` identifies it within an operation."""

    ref: str | None = Field(None, alias="$ref")
    name: str | None = None
    location: ParameterIn | None = Field(None, alias="in")
    description: str | None = None
    required: bool | None = None
    deprecated: bool | None = None
    allow_empty_value: bool | None = None
    style: ParameterStyle | None = None
    explode: bool | None = None
    allow_reserved: bool | None = None
    schema_: Schema | None = Field(None, alias="schema")
    content: dict[str, MediaType] | None = None
    example: Any = None
    examples: dict[str, Example] | None = None
    extensions: dict[str, Any] = {}


class RequestBody(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    description: str | None = None
    content: dict[str, MediaType] | None = None
    required: bool | None = None
    extensions: dict[str, Any] = {}


class Link(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    operation_id: str | None = None
    operation_ref: str | None = None
    parameters: dict[str, Any] | None = None
    request_body: Any = None
    description: str | None = None
    server: Server | None = None
    extensions: dict[str, Any] = {}


class APIResponse(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    description: str | None = None
    headers: dict[str, Header] | None = None
    content: dict[str, MediaType] | None = None
    links: dict[str, Link] | None = None
    extensions: dict[str, Any] = {}


class OAuthFlow(OpenApiModel):
    authorization_url: str | None = None
    token_url: str | None = None
    refresh_url: str | None = None
    scopes: dict[str, str] = {}
    extensions: dict[str, Any] = {}


class OAuthFlows(OpenApiModel):
    implicit: OAuthFlow | None = None
    password: OAuthFlow | None = None
    client_credentials: OAuthFlow | None = None
    authorization_code: OAuthFlow | None = None
    extensions: dict[str, Any] = {}


class SecurityScheme(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    type: SecuritySchemeType | None = None
    description: str | None = None
    name: str | None = None
    location: SecuritySchemeIn | None = Field(None, alias="in")
    scheme: str | None = None
    bearer_format: str | None = None
    flows: OAuthFlows | None = None
    open_id_connect_url: str | None = None
    extensions: dict[str, Any] = {}


class SecurityRequirement(OpenApiModel):
    """A security scheme name plus the scopes it requires."""

    name: str
    scopes: list[str] = []


class SecurityRequirementsSet(OpenApiModel):
    """Requirements that must all be satisfied together.

    An empty set marks security as optional.
    """

    requirements: list[SecurityRequirement] = []

    def as_mapping(self) -> dict[str, list[str]]:
        return {req.name: list(req.scopes) for req in self.requirements}


class Operation(OpenApiModel):
    operation_id: str | None = None
    summary: str | None = None
    description: str | None = None
    tags: list[str] = []
    external_docs: ExternalDocumentation | None = None
    parameters: list[Parameter] = []
    request_body: RequestBody | None = None
    responses: dict[str, APIResponse] = {}
    callbacks: dict[str, "Callback"] | None = None
    deprecated: bool | None = None
    security: list[SecurityRequirementsSet] | None = None
    servers: list[Server] | None = None
    extensions: dict[str, Any] = {}


class PathItem(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    summary: str | None = None
    description: str | None = None
    get: Operation | None = None
    put: Operation | None = None
    post: Operation | None = None
    delete: Operation | None = None
    options: Operation | None = None
    head: Operation | None = None
    patch: Operation | None = None
    trace: Operation | None = None
    servers: list[Server] | None = None
    parameters: list[Parameter] | None = None
    extensions: dict[str, Any] = {}

    def operations(self) -> dict[HttpMethod, Operation]:
        """Return the operations of this path item in HTTP method order."""
        found = {}
        for method in HttpMethod:
            operation = getattr(self, method.value)
            if operation is not None:
                found[method] = operation
        return found


class Callback(OpenApiModel):
    ref: str | None = Field(None, alias="$ref")
    expressions: dict[str, PathItem] = {}
    extensions: dict[str, Any] = {}


class Components(OpenApiModel):
    """Registry of reusable named objects; inert until referenced."""

    schemas: dict[str, Schema] = {}
    responses: dict[str, APIResponse] = {}
    parameters: dict[str, Parameter] = {}
    examples: dict[str, Example] = {}
    request_bodies: dict[str, RequestBody] = {}
    headers: dict[str, Header] = {}
    security_schemes: dict[str, SecurityScheme] = {}
    links: dict[str, Link] = {}
    callbacks: dict[str, Callback] = {}
    extensions: dict[str, Any] = {}

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)


class Document(OpenApiModel):
    """Root of the OpenAPI document built from one declaration set."""

    openapi: str = "3.0.3"
    info: Info
    servers: list[Server] = []
    paths: dict[str, PathItem] = {}
    components: Components | None = None
    security: list[SecurityRequirementsSet] | None = None
    tags: list[Tag] = []
    external_docs: ExternalDocumentation | None = None
    extensions: dict[str, Any] = {}

    def operations(self) -> Iterator[tuple[str, HttpMethod, Operation]]:
        for path, item in self.paths.items():
            for method, operation in item.operations().items():
                yield path, method, operation

    def find_operation(self, operation_id: str) -> Operation | None:
        for _, _, operation in self.operations():
            if operation.operation_id == operation_id:
                return operation
        return None


for _model in (Schema, Operation, PathItem, Callback, Components, Document):
    _model.model_rebuild()
