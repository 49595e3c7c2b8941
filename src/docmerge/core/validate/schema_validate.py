from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson
from jsonschema import Draft202012Validator

from docmerge.core.ooxml.errors import SchemaValidationError

SCHEMA_DIR = Path(__file__).resolve().parents[1] / "schemas"
SCHEMA_NAMES = ("mapping", "rows", "settings", "preview")


def load_json(path: Path) -> Any:
    return orjson.loads(path.read_bytes())


def schema_path(name: str) -> Path:
    if name not in SCHEMA_NAMES:
        raise KeyError(f"unknown schema: {name} (choose from {', '.join(SCHEMA_NAMES)})")
    return SCHEMA_DIR / f"{name}.schema.json"


def _json_path(parts: Any) -> str:
    path = "$"
    for p in parts:
        path += f"[{p!r}]" if isinstance(p, str) else f"[{p}]"
    return path


def validate_instance(schema: dict, instance: Any) -> list[str]:
    """
    Validate an in-memory instance.
    Returns human-readable issues (empty if valid), each as "<jsonpath>: <message>".
    """
    # NOTE: single-file schemas only (no external $ref)
    v = Draft202012Validator(schema)
    errors = sorted(v.iter_errors(instance), key=lambda e: list(e.path))
    return [f"{_json_path(e.path)}: {e.message}" for e in errors]


def validate_named(name: str, instance: Any) -> list[str]:
    return validate_instance(load_json(schema_path(name)), instance)


def ensure_valid(name: str, instance: Any) -> None:
    """Raise SchemaValidationError unless `instance` conforms to the named schema."""
    issues = validate_named(name, instance)
    if issues:
        raise SchemaValidationError(issues, subject=name)


def validate_json_against_schema(schema_file: Path, instance_file: Path) -> list[str]:
    if not schema_file.exists():
        return [f"[ERR] schema not found: {schema_file}"]
    if not instance_file.exists():
        return [f"[ERR] instance not found: {instance_file}"]
    return validate_instance(load_json(schema_file), load_json(instance_file))
