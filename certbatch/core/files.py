"""Document file IO: canonical directory listing, strict JSON reads, atomic writes."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from certbatch.core.errors import DocumentIOError
from certbatch.core.json_canon import pretty_json_text


DOCUMENT_SUFFIX = ".json"


def canonical_sort_key(path: Path) -> str:
    """Leaf ordering rule for batches: source file name, code point order."""

    return path.name


def list_document_files(directory: Path) -> list[Path]:
    """List ``*.json`` regular files directly under ``directory`` in canonical order.

    Symlinks are skipped; the batch membership must be exactly what lives in
    the directory.
    """

    if not directory.exists():
        raise DocumentIOError(f"directory does not exist: {directory}")
    if not directory.is_dir():
        raise DocumentIOError(f"not a directory: {directory}")

    out: list[Path] = []
    for p in directory.iterdir():
        if p.is_symlink() or not p.is_file():
            continue
        if p.suffix.lower() != DOCUMENT_SUFFIX:
            continue
        out.append(p)
    out.sort(key=canonical_sort_key)
    return out


def load_json_document(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8", errors="strict")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentIOError(f"cannot read document: {e}", source=path.name) from e
    try:
        obj = json.loads(text)
    except RecursionError as e:
        raise DocumentIOError("invalid JSON: nesting too deep", source=path.name) from e
    except ValueError as e:
        raise DocumentIOError(f"invalid JSON: {e}", source=path.name) from e
    if not isinstance(obj, dict):
        raise DocumentIOError("document must be a JSON object", source=path.name)
    return obj


def atomic_write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    text = pretty_json_text(obj)
    try:
        with tmp.open("w", encoding="utf-8", errors="strict", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp), str(path))
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise DocumentIOError(f"cannot write document: {e}", source=path.name) from e
