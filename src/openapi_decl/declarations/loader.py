"""Declaration file loader.

Reads a YAML or JSON document of the form::

    scopes:
      - {id: airlines, level: package}
      - {id: UserResource, level: class, parent: airlines, path: /user}
    declarations:
      - {scope: UserResource, kind: api_response, values: {response_code: "400"}}

into a :class:`DeclarationSet`.  Declarations without an explicit ``order``
are ordered by their position in the file.
"""

import json
from pathlib import Path

import yaml

from .records import Declaration, DeclarationSet


def detect_format(file_path: Path) -> str:
    """Detect the format of a declaration file.

    Returns: 'json' or 'yaml'.
    """
    if file_path.suffix.lower() == ".json":
        return "json"
    text = file_path.read_text(encoding="utf-8").lstrip()
    if text.startswith("{"):
        return "json"
    return "yaml"


def load_declarations(file_path: Path) -> DeclarationSet:
    """Parse a declaration file into a DeclarationSet."""
    text = file_path.read_text(encoding="utf-8")
    if detect_format(file_path) == "json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if not isinstance(data, dict):
        raise ValueError(f"{file_path}: expected a mapping with 'scopes' and 'declarations'")
    return parse_declarations(data, source=file_path.name)


def parse_declarations(data: dict, source: str = "") -> DeclarationSet:
    """Build a DeclarationSet from already-parsed data."""
    declarations = DeclarationSet()
    for scope in data.get("scopes", []):
        scope = dict(scope)
        declarations.add_scope(scope.pop("id"), scope.pop("level"), scope.pop("parent", None), **scope)

    for position, item in enumerate(data.get("declarations", [])):
        item = dict(item)
        item.setdefault("order", position)
        item.setdefault("source", f"{source}#declarations[{position}]" if source else f"declarations[{position}]")
        item["values"] = item.get("values") or {}
        declarations.add(Declaration(**item))
    return declarations
