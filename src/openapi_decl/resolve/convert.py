"""Phase 5: freeze resolved declarations into the immutable document model.

Each element is converted behind its own error boundary: an element that
declares mutually exclusive fields, or whose values do not validate, is
reported and left out while its siblings and parents are kept.
"""

import logging
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from openapi_decl.config import BuildSettings
from openapi_decl.model.document import (
    APIResponse,
    Callback,
    Components,
    Contact,
    Discriminator,
    Document,
    Encoding,
    Example,
    ExternalDocumentation,
    Header,
    Info,
    License,
    Link,
    MediaType,
    OAuthFlow,
    OAuthFlows,
    Operation,
    Parameter,
    PathItem,
    RequestBody,
    Schema,
    SecurityRequirement,
    SecurityRequirementsSet,
    SecurityScheme,
    Server,
    ServerVariable,
    Tag,
)
from openapi_decl.model.enums import (
    HttpMethod,
    ParameterIn,
    ParameterStyle,
    SchemaType,
    SecuritySchemeIn,
    SecuritySchemeType,
)

from .errors import BuildReport, ConflictingFieldError, DeclarationError, InvalidDeclarationError
from .merge import OperationDraft, response_key
from .references import ResolvedDraft
from .visibility import fold_extensions

logger = logging.getLogger(__name__)

# Security scheme fields that only apply to one scheme type.
SCHEME_FIELDS = {
    SecuritySchemeType.HTTP: {"scheme", "bearer_format"},
    SecuritySchemeType.API_KEY: {"api_key_name", "in"},
    SecuritySchemeType.OAUTH2: {"flows"},
    SecuritySchemeType.OPEN_ID_CONNECT: {"open_id_connect_url"},
}
ALL_SCHEME_FIELDS = set().union(*SCHEME_FIELDS.values())

OAUTH_FLOWS = ("implicit", "password", "client_credentials", "authorization_code")


def coerce_enum(enum_cls: type[Enum], raw: Any) -> Any:
    """Map an annotation-style constant (``QUERY``, ``API_KEY``) onto the enum.

    Unknown values are returned untouched so that model validation reports them.
    """
    if raw is None or isinstance(raw, enum_cls):
        return raw
    text = str(raw)
    folded = text.upper().replace("_", "")
    for member in enum_cls:
        if text == member.value or folded in (member.name.replace("_", ""), member.value.upper()):
            return member
    return text


class DocumentFactory:
    """Builds model nodes from resolved declaration values."""

    def __init__(self, report: BuildReport, settings: BuildSettings):
        self.report = report
        self.settings = settings

    def guard(self, build: Callable, values: Any, location: str, *args) -> Any:
        """Run one element conversion; element-local failures drop the element."""
        try:
            return build(values, location, *args)
        except ValidationError as e:
            self.report.add(InvalidDeclarationError(_summarize(e), location))
        except DeclarationError as e:
            if e.fatal:
                raise
            self.report.add(e)
        return None

    def document(self, resolved: ResolvedDraft) -> Document:
        draft = resolved.document
        definition = draft.definition
        servers = self._servers(draft.servers, "servers") or [Server(url=self.settings.default_server_url)]

        paths: dict[str, dict[str, Operation]] = {}
        for operation_draft in draft.operations:
            where = f"{operation_draft.method.upper()} {operation_draft.path}"
            operation = self.guard(self.operation, operation_draft, where)
            if operation is None:
                continue
            method = coerce_enum(HttpMethod, operation_draft.method)
            if not isinstance(method, HttpMethod):
                self.report.add(InvalidDeclarationError(f"unknown HTTP method {operation_draft.method!r}", where))
                continue
            paths.setdefault(operation_draft.path, {})[method.value] = operation

        components = self._components(resolved.components)
        tags = [t for t in (self.guard(self.tag, v, f"tags/{v.get('name')}") for v in resolved.tags) if t]

        document = Document(
            openapi=self.settings.openapi_version,
            info=self.info(definition.get("info") or {}, "info"),
            servers=servers,
            paths={path: PathItem(**operations) for path, operations in paths.items()},
            components=None if components.is_empty() else components,
            security=self._security(draft.security),
            tags=tags,
            external_docs=self._optional(self.external_docs, definition.get("external_docs"), "externalDocs"),
            extensions=fold_extensions(draft.extensions, "document", self.report),
        )
        logger.info("Froze document with %d paths and %d tags", len(document.paths), len(document.tags))
        return document

    def info(self, values: dict, location: str) -> Info:
        contact = values.get("contact")
        license = values.get("license")
        return Info(
            title=values.get("title") or self.settings.default_title,
            version=values.get("version") or self.settings.default_version,
            description=values.get("description"),
            terms_of_service=values.get("terms_of_service"),
            contact=Contact(
                name=contact.get("name"),
                url=contact.get("url"),
                email=contact.get("email"),
                extensions=self._extensions(contact, f"{location}/contact"),
            )
            if contact
            else None,
            license=License(
                name=license.get("name"),
                url=license.get("url"),
                extensions=self._extensions(license, f"{location}/license"),
            )
            if license
            else None,
            extensions=self._extensions(values, location),
        )

    def operation(self, draft: OperationDraft, location: str) -> Operation:
        values = draft.values
        tags = []
        for tag in draft.tags:
            if tag["name"] not in tags:
                tags.append(tag["name"])

        parameters = [
            p
            for p in (
                self.guard(self.parameter, v, f"{location}/parameters/{v.get('name') or v.get('ref')}")
                for v in draft.parameters
            )
            if p is not None
        ]
        responses = {}
        for code, response_values in draft.responses.items():
            response = self.guard(self.response, response_values, f"{location}/responses/{code}", draft.produces)
            if response is not None:
                responses[code] = response

        callbacks = self._named(self.callback, draft.callbacks, f"{location}/callbacks")
        request_body = None
        if draft.request_body is not None:
            request_body = self.guard(self.request_body, draft.request_body, f"{location}/requestBody", draft.consumes)

        return Operation(
            operation_id=values.get("operation_id"),
            summary=values.get("summary"),
            description=values.get("description"),
            deprecated=values.get("deprecated"),
            tags=tags,
            external_docs=self._optional(self.external_docs, draft.external_docs, f"{location}/externalDocs"),
            parameters=parameters,
            request_body=request_body,
            responses=responses,
            callbacks=callbacks,
            security=self._security(draft.security),
            servers=self._servers(draft.servers, f"{location}/servers") if draft.servers is not None else None,
            extensions=fold_extensions(draft.extensions, location, self.report),
        )

    def parameter(self, values: dict, location: str) -> Parameter:
        if values.get("ref"):
            return Parameter(ref=values["ref"], name=values.get("name"), description=values.get("description"))
        element = f"parameter {values.get('name')!r} in {values.get('in')}"
        self._exclusive(values, element, location, "schema", "content")
        self._exclusive(values, element, location, "example", "examples")
        return Parameter(
            name=values.get("name"),
            location=coerce_enum(ParameterIn, values.get("in")),
            description=values.get("description"),
            required=values.get("required"),
            deprecated=values.get("deprecated"),
            allow_empty_value=values.get("allow_empty_value"),
            style=coerce_enum(ParameterStyle, values.get("style")),
            explode=values.get("explode"),
            allow_reserved=values.get("allow_reserved"),
            schema_=self._optional(self.schema, values.get("schema"), f"{location}/schema"),
            content=self._content(values.get("content"), location, [self.settings.default_media_type]),
            example=values.get("example"),
            examples=self._named(self.example, values.get("examples"), f"{location}/examples"),
            extensions=self._extensions(values, location),
        )

    def schema(self, values: dict, location: str) -> Schema:
        if values.get("ref"):
            return Schema(ref=values["ref"], description=values.get("description"))

        required = list(values.get("required_properties") or [])
        properties = {}
        for prop in values.get("properties") or []:
            name = prop.get("name")
            if not name:
                continue
            if prop.get("required") is True and name not in required:
                required.append(name)
            node = self.guard(self.schema, prop, f"{location}/properties/{name}")
            if node is not None:
                properties[name] = node

        additional = values.get("additional_properties")
        if isinstance(additional, dict):
            additional = self.guard(self.schema, additional, f"{location}/additionalProperties")

        return Schema(
            type=coerce_enum(SchemaType, values.get("type")),
            format=values.get("format"),
            title=values.get("title"),
            description=values.get("description"),
            default_value=values.get("default_value"),
            enumeration=values.get("enumeration"),
            multiple_of=values.get("multiple_of"),
            maximum=values.get("maximum"),
            exclusive_maximum=values.get("exclusive_maximum"),
            minimum=values.get("minimum"),
            exclusive_minimum=values.get("exclusive_minimum"),
            max_length=values.get("max_length"),
            min_length=values.get("min_length"),
            pattern=values.get("pattern"),
            max_items=values.get("max_items"),
            min_items=values.get("min_items"),
            unique_items=values.get("unique_items"),
            max_properties=values.get("max_properties"),
            min_properties=values.get("min_properties"),
            required=required or None,
            properties=properties or None,
            additional_properties=additional,
            items=self._optional(self.schema, values.get("items"), f"{location}/items"),
            all_of=self._schemas(values.get("all_of"), f"{location}/allOf"),
            any_of=self._schemas(values.get("any_of"), f"{location}/anyOf"),
            one_of=self._schemas(values.get("one_of"), f"{location}/oneOf"),
            not_=self._optional(self.schema, values.get("not"), f"{location}/not"),
            nullable=values.get("nullable"),
            read_only=values.get("read_only"),
            write_only=values.get("write_only"),
            deprecated=values.get("deprecated"),
            example=values.get("example"),
            discriminator=self._discriminator(values),
            external_docs=self._optional(self.external_docs, values.get("external_docs"), f"{location}/externalDocs"),
            extensions=self._extensions(values, location),
        )

    def media_type(self, values: dict, location: str) -> MediaType:
        self._exclusive(values, f"media type {location.rsplit('/', 1)[-1]!r}", location, "example", "examples")
        return MediaType(
            schema_=self._optional(self.schema, values.get("schema"), f"{location}/schema"),
            example=values.get("example"),
            examples=self._named(self.example, values.get("examples"), f"{location}/examples"),
            encoding=self._named(self.encoding, values.get("encoding"), f"{location}/encoding"),
            extensions=self._extensions(values, location),
        )

    def example(self, values: dict, location: str) -> Example:
        if values.get("ref"):
            return Example(ref=values["ref"], description=values.get("description"))
        return Example(
            summary=values.get("summary"),
            description=values.get("description"),
            value=values.get("value"),
            external_value=values.get("external_value"),
            extensions=self._extensions(values, location),
        )

    def encoding(self, values: dict, location: str) -> Encoding:
        return Encoding(
            content_type=values.get("content_type"),
            headers=self._named(self.header, values.get("headers"), f"{location}/headers"),
            style=coerce_enum(ParameterStyle, values.get("style")),
            explode=values.get("explode"),
            allow_reserved=values.get("allow_reserved"),
            extensions=self._extensions(values, location),
        )

    def header(self, values: dict, location: str) -> Header:
        if values.get("ref"):
            return Header(ref=values["ref"], description=values.get("description"))
        return Header(
            description=values.get("description"),
            required=values.get("required"),
            deprecated=values.get("deprecated"),
            allow_empty_value=values.get("allow_empty_value"),
            schema_=self._optional(self.schema, values.get("schema"), f"{location}/schema"),
            extensions=self._extensions(values, location),
        )

    def request_body(self, values: dict, location: str, media_types: list[str] | None = None) -> RequestBody:
        if values.get("ref"):
            return RequestBody(ref=values["ref"], description=values.get("description"))
        return RequestBody(
            description=values.get("description"),
            content=self._content(values.get("content"), location, media_types or [self.settings.default_media_type]),
            required=values.get("required"),
            extensions=self._extensions(values, location),
        )

    def response(self, values: dict, location: str, media_types: list[str] | None = None) -> APIResponse:
        if values.get("ref"):
            return APIResponse(ref=values["ref"], description=values.get("description"))
        return APIResponse(
            description=values.get("description"),
            headers=self._named(self.header, values.get("headers"), f"{location}/headers"),
            content=self._content(values.get("content"), location, media_types or [self.settings.default_media_type]),
            links=self._named(self.link, values.get("links"), f"{location}/links"),
            extensions=self._extensions(values, location),
        )

    def link(self, values: dict, location: str) -> Link:
        if values.get("ref"):
            return Link(ref=values["ref"], description=values.get("description"))
        self._exclusive(values, f"link {location.rsplit('/', 1)[-1]!r}", location, "operation_id", "operation_ref")
        parameters = {p["name"]: p.get("expression") for p in values.get("parameters") or [] if p.get("name")}
        return Link(
            operation_id=values.get("operation_id"),
            operation_ref=values.get("operation_ref"),
            parameters=parameters or None,
            request_body=values.get("request_body"),
            description=values.get("description"),
            server=self._optional(self.server, values.get("server"), f"{location}/server"),
            extensions=self._extensions(values, location),
        )

    def server(self, values: dict, location: str) -> Server:
        variables = {}
        for variable in values.get("variables") or []:
            if variable.get("name"):
                variables[variable["name"]] = ServerVariable(
                    enumeration=variable.get("enumeration"),
                    default_value=variable.get("default_value"),
                    description=variable.get("description"),
                    extensions=self._extensions(variable, f"{location}/variables/{variable['name']}"),
                )
        return Server(
            url=values.get("url"),
            description=values.get("description"),
            variables=variables or None,
            extensions=self._extensions(values, location),
        )

    def tag(self, values: dict, location: str) -> Tag:
        return Tag(
            name=values["name"],
            description=values.get("description"),
            external_docs=self._optional(self.external_docs, values.get("external_docs"), f"{location}/externalDocs"),
            extensions=self._extensions(values, location),
        )

    def external_docs(self, values: dict, location: str) -> ExternalDocumentation:
        return ExternalDocumentation(
            description=values.get("description"),
            url=values.get("url"),
            extensions=self._extensions(values, location),
        )

    def security_scheme(self, values: dict, location: str) -> SecurityScheme:
        if values.get("ref"):
            return SecurityScheme(ref=values["ref"], description=values.get("description"))
        scheme_type = coerce_enum(SecuritySchemeType, values.get("type"))
        allowed = SCHEME_FIELDS.get(scheme_type, ALL_SCHEME_FIELDS)
        ignored = sorted(f for f in ALL_SCHEME_FIELDS - allowed if f in values)
        if ignored:
            logger.debug("%s: %s do not apply to %s schemes", location, ", ".join(ignored), scheme_type)
        values = {k: v for k, v in values.items() if k not in ignored}
        return SecurityScheme(
            type=scheme_type,
            description=values.get("description"),
            name=values.get("api_key_name"),
            location=coerce_enum(SecuritySchemeIn, values.get("in")),
            scheme=values.get("scheme"),
            bearer_format=values.get("bearer_format"),
            flows=self._flows(values.get("flows"), f"{location}/flows"),
            open_id_connect_url=values.get("open_id_connect_url"),
            extensions=self._extensions(values, location),
        )

    def callback(self, values: dict, location: str) -> Callback:
        if values.get("ref"):
            return Callback(ref=values["ref"])
        expression = values.get("callback_url_expression")
        if not expression:
            raise InvalidDeclarationError("callback has no callback_url_expression", location)
        operations = {}
        for operation_values in values.get("operations") or []:
            method = coerce_enum(HttpMethod, operation_values.get("method"))
            if not isinstance(method, HttpMethod):
                raise InvalidDeclarationError(f"unknown HTTP method {operation_values.get('method')!r}", location)
            draft = OperationDraft(
                scope=location,
                path=expression,
                method=method.value,
                values={k: operation_values.get(k) for k in ("operation_id", "summary", "description", "deprecated")},
                parameters=operation_values.get("parameters") or [],
                request_body=operation_values.get("request_body"),
                responses={response_key(r): r for r in operation_values.get("responses") or []},
                extensions=operation_values.get("extensions") or [],
            )
            operation = self.guard(self.operation, draft, f"{location}/{method.value}")
            if operation is not None:
                operations[method.value] = operation
        return Callback(
            expressions={expression: PathItem(**operations)},
            extensions=self._extensions(values, location),
        )

    def _components(self, sections: dict[str, dict[str, dict]]) -> Components:
        builders = {
            "schemas": self.schema,
            "responses": self.response,
            "parameters": self.parameter,
            "examples": self.example,
            "request_bodies": self.request_body,
            "headers": self.header,
            "security_schemes": self.security_scheme,
            "links": self.link,
            "callbacks": self.callback,
        }
        fields = {}
        for section, build in builders.items():
            entries = {}
            for name, values in sections.get(section, {}).items():
                node = self.guard(build, values, f"components/{section}/{name}")
                if node is not None:
                    entries[name] = node
            fields[section] = entries
        return Components(**fields)

    def _content(self, items: list[dict] | None, location: str, media_types: list[str]) -> dict[str, MediaType] | None:
        """Content entries without a media type apply to every default media type."""
        content = {}
        for item in items or []:
            item = dict(item)
            media_type = item.pop("media_type", None)
            for target in [media_type] if media_type else media_types:
                node = self.guard(self.media_type, item, f"{location}/content/{target}")
                if node is not None:
                    content[target] = node
        return content or None

    def _named(self, build: Callable, items: list[dict] | None, location: str) -> dict | None:
        named = {}
        for item in items or []:
            name = item.get("name")
            if not name:
                logger.warning("%s: ignoring entry without a name", location)
                continue
            node = self.guard(build, item, f"{location}/{name}")
            if node is not None:
                named[name] = node
        return named or None

    def _schemas(self, items: list[dict] | None, location: str) -> list[Schema] | None:
        schemas = [
            s for s in (self.guard(self.schema, item, f"{location}/{i}") for i, item in enumerate(items or [])) if s
        ]
        return schemas or None

    def _optional(self, build: Callable, values: dict | None, location: str) -> Any:
        if not values:
            return None
        return self.guard(build, values, location)

    def _servers(self, items: list[dict], location: str) -> list[Server]:
        return [s for s in (self.guard(self.server, v, f"{location}/{v.get('url')}") for v in items) if s]

    def _security(self, sets: list[dict] | None) -> list[SecurityRequirementsSet] | None:
        if sets is None:
            return None
        return [
            SecurityRequirementsSet(
                requirements=[
                    SecurityRequirement(name=r["name"], scopes=r.get("scopes") or []) for r in s["requirements"]
                ]
            )
            for s in sets
        ]

    def _flows(self, values: dict | None, location: str) -> OAuthFlows | None:
        if not values:
            return None
        flows = {}
        for flow_name in OAUTH_FLOWS:
            flow = values.get(flow_name)
            if not flow:
                continue
            flows[flow_name] = OAuthFlow(
                authorization_url=flow.get("authorization_url"),
                token_url=flow.get("token_url"),
                refresh_url=flow.get("refresh_url"),
                scopes={s["name"]: s.get("description") or "" for s in flow.get("scopes") or [] if s.get("name")},
                extensions=self._extensions(flow, f"{location}/{flow_name}"),
            )
        return OAuthFlows(**flows, extensions=self._extensions(values, location))

    def _discriminator(self, values: dict) -> Discriminator | None:
        property_name = values.get("discriminator_property")
        if not property_name:
            return None
        mapping = {
            m["value"]: "#/components/schemas/" + str(m["schema"]).rsplit(".", 1)[-1]
            for m in values.get("discriminator_mapping") or []
            if m.get("value") and m.get("schema")
        }
        return Discriminator(property_name=property_name, mapping=mapping or None)

    def _extensions(self, values: dict, location: str) -> dict[str, Any]:
        return fold_extensions(values.get("extensions") or [], location, self.report)

    @staticmethod
    def _exclusive(values: dict, element: str, location: str, first: str, second: str) -> None:
        if values.get(first) is not None and values.get(second):
            raise ConflictingFieldError(element, (first, second), location)


def _summarize(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in error.errors())
