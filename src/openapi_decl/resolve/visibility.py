"""Phase 2 hidden-element suppression, and extension folding.

Hiding runs before anything is merged or resolved: a hidden element is
removed together with everything nested in it, and a hidden operation
removes its whole scope (and any scope below it).
"""

import logging
from typing import Any

import yaml

from openapi_decl.declarations.defaults import OPAQUE
from openapi_decl.declarations.records import DeclarationSet

from .collect import OPERATION, ScopeEntries
from .errors import (
    BuildReport,
    DuplicateExtensionKeyError,
    InvalidDeclarationError,
    InvalidExtensionKeyError,
)

logger = logging.getLogger(__name__)

EXTENSION_PREFIX = "x-"


def apply_hidden_filter(
    collected: dict[str, ScopeEntries], declarations: DeclarationSet
) -> dict[str, ScopeEntries]:
    """Return the collected entries with every hidden element removed."""
    hidden_scopes = {
        scope_id
        for scope_id, scope_entries in collected.items()
        if any(e.values.get("hidden") is True for e in scope_entries.get(OPERATION))
    }

    visible = {}
    for scope_id, scope_entries in collected.items():
        if any(s.id in hidden_scopes for s in declarations.chain(scope_id)):
            logger.debug("Scope %s is hidden", scope_id)
            continue
        filtered = ScopeEntries(explicit_empty=set(scope_entries.explicit_empty))
        for collection, entries in scope_entries.entries.items():
            kept = []
            for entry in entries:
                if entry.values.get("hidden") is True:
                    logger.debug("Dropping hidden %s from %s (%s)", collection, scope_id, entry.source)
                    continue
                kept.append(entry.model_copy(update={"values": prune_hidden(entry.values)}))
            if kept:
                filtered.entries[collection] = kept
        visible[scope_id] = filtered
    return visible


def prune_hidden(values: dict[str, Any]) -> dict[str, Any]:
    """Remove nested elements marked hidden."""
    pruned = {}
    for key, value in values.items():
        if key == "hidden":
            continue
        if key in OPAQUE:
            pruned[key] = value
        elif isinstance(value, dict):
            if value.get("hidden") is True:
                continue
            pruned[key] = prune_hidden(value)
        elif isinstance(value, list):
            pruned[key] = [
                prune_hidden(item) if isinstance(item, dict) else item
                for item in value
                if not (isinstance(item, dict) and item.get("hidden") is True)
            ]
        else:
            pruned[key] = value
    return pruned


def fold_extensions(entries: list[dict], location: str, report: BuildReport) -> dict[str, Any]:
    """Fold extension entries into one map.

    Entries reaching this point all sit at the same precedence level; a key
    declared more than once is dropped and reported, even when the values
    agree. The rest of the owning element is kept.
    """
    by_key: dict[str, list[Any]] = {}
    for entry in entries:
        name = entry.get("name")
        if not name:
            continue
        value = entry.get("value")
        if entry.get("parse_value") and isinstance(value, str):
            try:
                value = yaml.safe_load(value)
            except yaml.YAMLError as e:
                report.add(InvalidDeclarationError(f"extension {name!r} value is not valid JSON: {e}", location))
                continue
        by_key.setdefault(name, []).append(value)

    folded = {}
    for key, values in by_key.items():
        if not key.startswith(EXTENSION_PREFIX):
            report.add(InvalidExtensionKeyError(key, location))
            continue
        if len(values) > 1:
            report.add(DuplicateExtensionKeyError(key, location))
            continue
        folded[key] = values[0]
    return folded
