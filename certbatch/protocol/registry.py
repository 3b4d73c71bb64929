from __future__ import annotations

import importlib.resources
import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Protocol

from certbatch.core.errors import SchemaError
from certbatch.core.hash import sha256_bytes
from certbatch.core.schema import SchemaIssue, validate_schema
from certbatch.protocol.document import document_body, redacted_paths


SCHEMA_FILE_SUFFIX = ".schema.json"
SCHEMA_FILE_PREFIX = "certificate-"

VERSION_KEY = "x-schemaVersion"
MANDATORY_KEY = "x-mandatoryDisclosure"


class _Traversable(Protocol):
    # Minimal subset of importlib.resources.abc.Traversable we need.
    name: str

    def iterdir(self) -> Iterable["_Traversable"]: ...

    def is_file(self) -> bool: ...

    def read_bytes(self) -> bytes: ...


@dataclass(frozen=True)
class SchemaEntry:
    version: str
    filename: str
    sha256: str
    schema: Mapping[str, Any]
    mandatory_disclosure: tuple[str, ...]

    def is_mandatory(self, path: str) -> bool:
        """True when ``path`` is, or lies under, or contains a mandatory-disclosure path."""

        for m in self.mandatory_disclosure:
            if path == m or _is_under(path, m) or _is_under(m, path):
                return True
        return False


def _is_under(path: str, prefix: str) -> bool:
    return path.startswith(prefix + ".") or path.startswith(prefix + "[")


@dataclass(frozen=True)
class SchemaRegistry:
    """Immutable map of schema version -> schema, loaded once and passed explicitly."""

    entries: Mapping[str, SchemaEntry]
    order: tuple[str, ...]
    fingerprint: str

    def versions(self) -> list[str]:
        return list(self.order)

    @property
    def latest(self) -> str:
        return self.order[-1]

    def __contains__(self, version: object) -> bool:
        return version in self.entries

    def get(self, version: str) -> SchemaEntry:
        entry = self.entries.get(version)
        if entry is None:
            raise SchemaError(f"unknown schema version: {version!r} (known: {', '.join(self.order)})")
        return entry


def _parse_schema_file(filename: str, data: bytes) -> SchemaEntry:
    try:
        obj = json.loads(data.decode("utf-8", errors="strict"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"schema file is not valid UTF-8 JSON: {filename} ({e})") from e
    if not isinstance(obj, dict):
        raise ValueError(f"schema must be a JSON object: {filename}")

    version = obj.get(VERSION_KEY)
    if not isinstance(version, str) or not version:
        raise ValueError(f"{filename}: {VERSION_KEY} missing/empty")

    mandatory = obj.get(MANDATORY_KEY, [])
    if not isinstance(mandatory, list) or not all(isinstance(m, str) and m for m in mandatory):
        raise ValueError(f"{filename}: {MANDATORY_KEY} must be a list of field paths")
    if "schemaVersion" not in mandatory:
        raise ValueError(f"{filename}: schemaVersion must be mandatory disclosure")

    return SchemaEntry(
        version=version,
        filename=filename,
        sha256=sha256_bytes(data),
        schema=MappingProxyType(obj),
        mandatory_disclosure=tuple(mandatory),
    )


def build_registry(files: Iterable[tuple[str, bytes]]) -> SchemaRegistry:
    """Build a registry from (filename, bytes) pairs.

    Versions are ordered by filename; the last one is the default for new
    batches. Duplicate versions are rejected.
    """

    entries: dict[str, SchemaEntry] = {}
    order: list[str] = []
    fp_parts: list[bytes] = []
    for filename, data in sorted(files, key=lambda x: x[0]):
        entry = _parse_schema_file(filename, data)
        if entry.version in entries:
            raise ValueError(f"duplicate schema version {entry.version!r} in {filename}")
        entries[entry.version] = entry
        order.append(entry.version)
        fp_parts.append(f"{filename}\n{entry.sha256}\n".encode("utf-8"))

    if not order:
        raise ValueError("schema registry is empty")

    return SchemaRegistry(
        entries=MappingProxyType(entries),
        order=tuple(order),
        fingerprint=sha256_bytes(b"".join(fp_parts)),
    )


def _is_schema_filename(name: str) -> bool:
    return name.startswith(SCHEMA_FILE_PREFIX) and name.endswith(SCHEMA_FILE_SUFFIX)


def load_registry_from_tree(root: _Traversable) -> SchemaRegistry:
    files = [
        (node.name, node.read_bytes())
        for node in root.iterdir()
        if node.is_file() and _is_schema_filename(node.name)
    ]
    return build_registry(files)


def get_builtin_registry() -> SchemaRegistry:
    """Return the registry of schemas shipped with the certbatch package."""

    tree = importlib.resources.files("certbatch").joinpath("_schemas")
    return load_registry_from_tree(tree)


def validate_document(
    document: dict[str, Any],
    schema_version: str,
    registry: SchemaRegistry,
    *,
    redacted: Iterable[str] | None = None,
) -> list[SchemaIssue]:
    """Validate a (raw or decorated) document body against ``schema_version``.

    Redacted fields (those whose commitment lost its salt) only need to hold a
    commitment hash, and none of them may be mandatory disclosure.
    """

    entry = registry.get(schema_version)
    body = document_body(document)
    redacted_list = sorted(redacted) if redacted is not None else redacted_paths(document)

    issues: list[SchemaIssue] = []
    declared = body.get("schemaVersion")
    if declared != schema_version:
        issues.append(
            SchemaIssue(path="schemaVersion", message=f"declared {declared!r}, selected {schema_version!r}")
        )

    for path in redacted_list:
        if entry.is_mandatory(path):
            issues.append(SchemaIssue(path=path, message="mandatory disclosure field is redacted"))

    schema = dict(entry.schema)
    issues.extend(validate_schema(body, schema, root_schema=schema, redacted=redacted_list))
    issues.sort(key=lambda e: (e.path, e.message))
    return issues


def is_valid_document(document: dict[str, Any], schema_version: str, registry: SchemaRegistry) -> bool:
    """Pass/fail contract used by verification and redaction."""

    try:
        return not validate_document(document, schema_version, registry)
    except SchemaError:
        return False


def require_valid_document(
    document: dict[str, Any],
    schema_version: str,
    registry: SchemaRegistry,
    *,
    source: str | None = None,
) -> None:
    issues = validate_document(document, schema_version, registry)
    if issues:
        summary = "; ".join(f"{i.path}: {i.message}" for i in issues[:5])
        if len(issues) > 5:
            summary += f"; ... ({len(issues) - 5} more)"
        raise SchemaError(f"schema {schema_version} validation failed: {summary}", issues=issues, source=source)
