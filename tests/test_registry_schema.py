"""Tests for the schema registry and the document schema validator.

These tests verify:
- Built-in schemas load from package data and are immutable
- Registry ordering, fingerprint and duplicate/empty rejection
- Mandatory-disclosure matching covers parents and children
- Redacted fields are tolerated only when they hold a commitment hash
"""

from __future__ import annotations

import importlib.resources
import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from certbatch.core.errors import SchemaError
from certbatch.core.schema import SchemaIssue, parse_rfc3339, validate_schema
from certbatch.protocol.registry import (
    build_registry,
    get_builtin_registry,
    is_valid_document,
    load_registry_from_tree,
    require_valid_document,
    validate_document,
)


V1 = "certbatch/1.0"
V2 = "certbatch/2.0"


def _schema_bytes(version: str, mandatory: list[str] | None = None) -> bytes:
    obj = {
        "x-schemaVersion": version,
        "x-mandatoryDisclosure": mandatory if mandatory is not None else ["schemaVersion"],
        "type": "object",
        "required": ["schemaVersion"],
        "properties": {"schemaVersion": {"const": version}},
    }
    return json.dumps(obj).encode("utf-8")


def _doc_v1() -> dict:
    return {
        "schemaVersion": V1,
        "id": "cert-1",
        "issuedOn": "2024-01-01T00:00:00Z",
        "issuer": {"id": "i", "name": "Issuer"},
        "recipient": {"name": "R", "email": "r@example.org"},
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_builtin_registry_versions_and_default() -> None:
    registry = get_builtin_registry()
    assert registry.versions() == [V1, V2]
    assert registry.latest == V2
    assert V1 in registry
    assert "certbatch/0.1" not in registry
    assert len(registry.fingerprint) == 64


def test_builtin_registry_is_immutable() -> None:
    registry = get_builtin_registry()
    with pytest.raises(TypeError):
        registry.entries["x"] = registry.get(V1)  # type: ignore[index]
    with pytest.raises(TypeError):
        registry.get(V1).schema["type"] = "array"  # type: ignore[index]


def test_builtin_registry_is_stable() -> None:
    assert get_builtin_registry().fingerprint == get_builtin_registry().fingerprint


def test_unknown_version_raises_schema_error() -> None:
    with pytest.raises(SchemaError):
        get_builtin_registry().get("certbatch/9.0")


def test_build_registry_orders_by_filename() -> None:
    registry = build_registry(
        [
            ("certificate-b.schema.json", _schema_bytes("v-b")),
            ("certificate-a.schema.json", _schema_bytes("v-a")),
        ]
    )
    assert registry.versions() == ["v-a", "v-b"]
    assert registry.latest == "v-b"


def test_build_registry_rejects_duplicates_and_empty() -> None:
    with pytest.raises(ValueError, match="duplicate"):
        build_registry(
            [
                ("certificate-a.schema.json", _schema_bytes("v")),
                ("certificate-b.schema.json", _schema_bytes("v")),
            ]
        )
    with pytest.raises(ValueError, match="empty"):
        build_registry([])


def test_build_registry_requires_schema_version_disclosure() -> None:
    with pytest.raises(ValueError, match="schemaVersion"):
        build_registry([("certificate-a.schema.json", _schema_bytes("v", mandatory=["id"]))])


def test_load_registry_from_tree_ignores_other_files(tmp_path: Path) -> None:
    (tmp_path / "certificate-x.schema.json").write_bytes(_schema_bytes("v-x"))
    (tmp_path / "README.json").write_text("{}", encoding="utf-8")
    (tmp_path / "certificate-notes").mkdir()
    registry = load_registry_from_tree(tmp_path)
    assert registry.versions() == ["v-x"]

    with pytest.raises(ValueError, match="empty"):
        load_registry_from_tree(tmp_path / "certificate-notes")


def test_mandatory_matching_covers_parents_and_children() -> None:
    entry = get_builtin_registry().get(V1)
    assert entry.is_mandatory("issuer")
    assert entry.is_mandatory("issuer.name")
    assert entry.is_mandatory("id")
    assert not entry.is_mandatory("identifier")
    assert not entry.is_mandatory("recipient.email")


def test_schema_pack_is_data_only() -> None:
    root = importlib.resources.files("certbatch").joinpath("_schemas")
    names = sorted(n.name for n in root.iterdir())
    assert names == ["certificate-1.0.schema.json", "certificate-2.0.schema.json"]


# ---------------------------------------------------------------------------
# Document validation
# ---------------------------------------------------------------------------

def test_valid_v1_document() -> None:
    registry = get_builtin_registry()
    assert validate_document(_doc_v1(), V1, registry) == []
    assert is_valid_document(_doc_v1(), V1, registry)


def test_declared_version_must_match_selected() -> None:
    registry = get_builtin_registry()
    issues = validate_document(_doc_v1(), V2, registry)
    assert SchemaIssue(path="schemaVersion", message=f"declared {V1!r}, selected {V2!r}") in issues
    assert any(i.path == "$" and "name" in i.message for i in issues)


def test_is_valid_document_false_for_unknown_version() -> None:
    assert not is_valid_document(_doc_v1(), "certbatch/7.0", get_builtin_registry())


def test_require_valid_document_carries_issues() -> None:
    doc = _doc_v1()
    doc["recipient"]["email"] = "not an email"
    doc["issuedOn"] = "yesterday"
    with pytest.raises(SchemaError) as ei:
        require_valid_document(doc, V1, get_builtin_registry(), source="x.json")
    assert [i.path for i in ei.value.issues] == ["issuedOn", "recipient.email"]
    assert str(ei.value).startswith("x.json: ")


def test_redacted_field_must_hold_hash() -> None:
    registry = get_builtin_registry()
    doc = _doc_v1()
    doc["recipient"]["email"] = "ab" * 32
    assert validate_document(doc, V1, registry, redacted=["recipient.email"]) == []

    doc["recipient"]["email"] = "not-a-hash"
    issues = validate_document(doc, V1, registry, redacted=["recipient.email"])
    assert [i.path for i in issues] == ["recipient.email"]


def test_redacted_mandatory_field_is_an_issue() -> None:
    registry = get_builtin_registry()
    doc = _doc_v1()
    doc["id"] = "cd" * 32
    issues = validate_document(doc, V1, registry, redacted=["id"])
    assert issues == [SchemaIssue(path="id", message="mandatory disclosure field is redacted")]


def test_redacted_paths_are_read_from_commitments() -> None:
    registry = get_builtin_registry()
    doc = _doc_v1()
    doc["recipient"]["email"] = "ab" * 32
    doc["fieldCommitments"] = {"recipient.email": {"hash": "ab" * 32}}
    assert validate_document(doc, V1, registry) == []


# ---------------------------------------------------------------------------
# Validator keywords
# ---------------------------------------------------------------------------

def test_number_accepts_integers_and_rejects_booleans() -> None:
    schema = {"type": "number", "minimum": 0}
    assert validate_schema(3, schema, root_schema=schema) == []
    assert validate_schema(2.5, schema, root_schema=schema) == []
    assert validate_schema(True, schema, root_schema=schema) != []
    assert validate_schema(-1, schema, root_schema=schema)[0].message == "minimum 0"


def test_root_issues_are_reported_at_dollar() -> None:
    schema = {"type": "object", "required": ["a"]}
    assert validate_schema({}, schema, root_schema=schema) == [SchemaIssue(path="$", message="missing required 'a'")]


def test_items_enum_and_closed_objects() -> None:
    schema = {
        "type": "array",
        "items": {
            "type": "object",
            "required": ["side"],
            "properties": {"side": {"enum": ["left", "right"]}},
            "additionalProperties": False,
        },
    }
    assert validate_schema([{"side": "left"}], schema, root_schema=schema) == []
    issues = validate_schema([{"side": "up"}, {"side": "right", "x": 1}], schema, root_schema=schema)
    assert issues == [
        SchemaIssue(path="[0].side", message="enum mismatch"),
        SchemaIssue(path="[1].x", message="additionalProperties not allowed"),
    ]


def test_unsupported_keywords_are_ignored() -> None:
    schema = {"type": "array", "minItems": 5, "oneOf": [{"type": "string"}]}
    assert validate_schema([], schema, root_schema=schema) == []


@pytest.mark.parametrize("value", ["2024-01-01T00:00:00Z", "2024-01-01T00:00:00.123+05:30"])
def test_rfc3339_accepts(value: str) -> None:
    parse_rfc3339(value)


@pytest.mark.parametrize("value", ["2024-01-01", "2024-01-01T00:00:00", "2024-13-01T00:00:00Z", ""])
def test_rfc3339_rejects(value: str) -> None:
    with pytest.raises(ValueError):
        parse_rfc3339(value)
