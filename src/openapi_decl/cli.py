"""CLI entry point for openapi-decl."""

import logging
import sys
from pathlib import Path

import click

from openapi_decl.config import BuildSettings
from openapi_decl.declarations.loader import load_declarations
from openapi_decl.resolve.builder import BuildResult, DocumentBuilder
from openapi_decl.resolve.errors import DocumentBuildError


def _build(decl_path: Path, openapi_version: str | None) -> BuildResult:
    """Load a declaration file and build its document, exiting on fatal errors."""
    declarations = load_declarations(decl_path)
    click.echo(f"Loaded {len(declarations)} declarations from {decl_path}.")

    builder = DocumentBuilder(BuildSettings.from_env(openapi_version=openapi_version))
    try:
        return builder.build(declarations)
    except DocumentBuildError as e:
        for error in e.errors:
            marker = "FATAL" if error.fatal else "warn"
            click.echo(f"  [{marker}] {error}", err=True)
        click.echo("Build aborted.", err=True)
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log every resolution step.")
def main(verbose: bool):
    """openapi-decl — build OpenAPI documents from declaration records."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("decl_path", type=click.Path(exists=True, path_type=Path))
@click.option("--openapi-version", default=None, help="OpenAPI version written into the document.")
def check(decl_path: Path, openapi_version: str | None):
    """Build the document and report every collected error."""
    result = _build(decl_path, openapi_version)
    for error in result.errors:
        click.echo(f"  [warn] {error}")
    operations = sum(1 for _ in result.document.operations())
    click.echo(f"Built {operations} operations on {len(result.document.paths)} paths, {len(result.errors)} warnings.")


@main.command()
@click.argument("decl_path", type=click.Path(exists=True, path_type=Path))
def paths(decl_path: Path):
    """List the operations the declarations produce."""
    result = _build(decl_path, None)
    for path, method, operation in result.document.operations():
        click.echo(f"{method.value.upper():7} {path}  {operation.operation_id or '-'}")
