"""Errors raised while building a document, and the report that collects them.

Element-local errors drop one element (or one extension key) and the build
goes on; fatal errors abort the build once the current phase has finished,
so the caller always receives the whole batch.
"""

import logging

logger = logging.getLogger(__name__)


class DeclarationError(Exception):
    """Base class for everything a build can report."""

    fatal = False

    def __init__(self, message: str, location: str = ""):
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message


class DuplicateDefinitionError(DeclarationError):
    """Two complete declarations share one name within one entity kind."""

    fatal = True

    def __init__(self, kind: str, name: str, sources: list[str]):
        self.kind = kind
        self.name = name
        self.sources = sources
        super().__init__(
            f"{kind} {name!r} is defined more than once ({', '.join(sources)})",
            location=f"{kind}/{name}",
        )


class UnresolvedReferenceError(DeclarationError):
    """A ref without a local definition; kept in the document as-is."""

    def __init__(self, kind: str, ref: str, location: str = ""):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} reference {ref!r} has no local definition", location)


class ConflictingFieldError(DeclarationError):
    """An element sets two mutually exclusive fields; the element is dropped."""

    def __init__(self, element: str, fields: tuple[str, ...], location: str = ""):
        self.element = element
        self.fields = fields
        super().__init__(f"{element} declares mutually exclusive fields {' and '.join(fields)}", location)


class DuplicateExtensionKeyError(DeclarationError):
    """One extension key carries different values at the same precedence level."""

    def __init__(self, key: str, location: str = ""):
        self.key = key
        super().__init__(f"extension {key!r} is declared more than once with different values", location)


class InvalidExtensionKeyError(DeclarationError):
    """An extension key that does not start with ``x-``."""

    def __init__(self, key: str, location: str = ""):
        self.key = key
        super().__init__(f"extension {key!r} must start with 'x-'", location)


class InvalidDeclarationError(DeclarationError):
    """An element whose values do not describe a valid document node."""


class DocumentBuildError(Exception):
    """Raised when a fatal error aborts the build; carries every collected error."""

    def __init__(self, errors: list[DeclarationError]):
        self.errors = errors
        fatal = [e for e in errors if e.fatal]
        super().__init__(f"document build aborted with {len(fatal)} fatal error(s): " + "; ".join(map(str, fatal)))


class BuildReport:
    """Ordered collection of the errors one build produced."""

    def __init__(self):
        self.errors: list[DeclarationError] = []

    def add(self, error: DeclarationError) -> None:
        if error.fatal:
            logger.error("%s", error)
        elif isinstance(error, UnresolvedReferenceError):
            logger.info("%s", error)
        else:
            logger.warning("%s", error)
        self.errors.append(error)

    @property
    def fatal(self) -> list[DeclarationError]:
        return [e for e in self.errors if e.fatal]

    def of_type(self, error_type: type) -> list[DeclarationError]:
        return [e for e in self.errors if isinstance(e, error_type)]

    def __len__(self) -> int:
        return len(self.errors)
