"""Document builder: runs the resolution phases in order over one declaration set.

    1. collect      raw annotation instances per scope
    2. hide         drop hidden elements and scopes
    3. merge        precedence within and across scopes
    4. resolve      named definitions and ref sites
    5. freeze       immutable Document

Every call starts from fresh state, so building the same declarations twice
yields equal documents.
"""

import logging

from pydantic import BaseModel, ConfigDict

from openapi_decl.config import BuildSettings
from openapi_decl.declarations.records import DeclarationSet
from openapi_decl.model.document import Document

from .collect import collect
from .convert import DocumentFactory
from .errors import BuildReport, DeclarationError, DocumentBuildError
from .merge import ScopeMerger
from .references import resolve_references
from .visibility import apply_hidden_filter

logger = logging.getLogger(__name__)


class BuildResult(BaseModel):
    """The frozen document plus every non-fatal error the build collected."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    document: Document
    errors: list[DeclarationError] = []

    def errors_of(self, error_type: type) -> list[DeclarationError]:
        return [e for e in self.errors if isinstance(e, error_type)]


class DocumentBuilder:
    """Builds one OpenAPI document per call to :meth:`build`."""

    def __init__(self, settings: BuildSettings | None = None):
        self.settings = settings or BuildSettings()

    def build(self, declarations: DeclarationSet) -> BuildResult:
        """Build a document.

        Raises DocumentBuildError, carrying every collected error, when a
        document-global error (a duplicate definition) makes the result
        unusable.
        """
        report = BuildReport()
        logger.info("Building document from %d declarations", len(declarations))

        collected = collect(declarations)
        visible = apply_hidden_filter(collected, declarations)
        draft = ScopeMerger(declarations, visible).merge()
        resolved = resolve_references(draft, report)
        if report.fatal:
            raise DocumentBuildError(report.errors)

        document = DocumentFactory(report, self.settings).document(resolved)
        return BuildResult(document=document, errors=report.errors)


def build_document(declarations: DeclarationSet, settings: BuildSettings | None = None) -> BuildResult:
    return DocumentBuilder(settings).build(declarations)
