"""Load and save workflow definitions as YAML or JSON."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from .contracts import WorkflowDefinition
from .exceptions import DefinitionValidationError

_JSON_SUFFIXES = {".json"}


def parse_definition(data: Mapping[str, Any]) -> WorkflowDefinition:
    """Validate a definition mapping (camelCase or snake_case keys)."""
    if not isinstance(data, Mapping):
        raise DefinitionValidationError("Workflow definition must be a mapping")
    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise DefinitionValidationError(
            f"Invalid workflow definition: {exc}", field
        ) from exc


def loads_definition(text: str) -> WorkflowDefinition:
    """Parse a definition from YAML or JSON text (JSON is valid YAML)."""
    if not text or not text.strip():
        raise DefinitionValidationError("Workflow definition content is empty")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise DefinitionValidationError(f"Failed to parse workflow definition: {exc}") from exc
    return parse_definition(data)


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Read a definition from a ``.yaml``, ``.yml`` or ``.json`` file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Workflow definition file not found: {path}")
    return loads_definition(path.read_text(encoding="utf-8"))


def dump_definition(definition: WorkflowDefinition, fmt: str = "yaml") -> str:
    """Serialize ``definition`` with camelCase keys as ``yaml`` or ``json``."""
    # Routes are derived on load, so only the authored fields are written.
    data = definition.model_dump(
        mode="json", by_alias=True, exclude={"steps": {"__all__": {"routes"}}}
    )
    if fmt == "json":
        return json.dumps(data, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False)
    raise ValueError(f"Unsupported definition format: {fmt}")


def save_definition(definition: WorkflowDefinition, path: str | Path) -> None:
    """Write ``definition`` to ``path``; the suffix picks JSON or YAML."""
    path = Path(path)
    fmt = "json" if path.suffix.lower() in _JSON_SUFFIXES else "yaml"
    path.write_text(dump_definition(definition, fmt), encoding="utf-8")
