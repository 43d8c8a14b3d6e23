"""Catalog embedding store: an immutable, process-local table of services.

The snapshot is produced offline (see ``build_snapshot.py``) and loaded once
per process. Every entry must share the same embedding dimension; a snapshot
that violates this is a startup-time error, not a per-request one.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Sequence

import numpy as np
from pydantic import BaseModel, Field, ValidationError

from .config import settings
from .models import CatalogEntry

logger = logging.getLogger(__name__)


class CatalogLoadError(Exception):
    """Raised when the catalog snapshot is missing or malformed."""
    pass


class SnapshotEntry(BaseModel):
    """Schema of one snapshot record."""
    id: str = Field(min_length=1)
    title: str
    embedding: list[float] = Field(min_length=1)
    description: str = ""
    category: str = ""
    price: float | None = None


class CatalogStore:
    """Read-only catalog with a precomputed embedding matrix.

    The matrix and norms are flagged non-writeable so concurrent readers can
    share them without locking.
    """

    def __init__(self, entries: Sequence[CatalogEntry], *, version: str = "unversioned") -> None:
        self._entries: tuple[CatalogEntry, ...] = tuple(entries)
        self.version = version

        if self._entries:
            matrix = np.asarray([e.embedding for e in self._entries], dtype=np.float64)
        else:
            matrix = np.zeros((0, 0), dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) if matrix.size else np.zeros(len(self._entries))

        matrix.setflags(write=False)
        norms.setflags(write=False)
        self._matrix = matrix
        self._norms = norms
        self._by_id: Mapping[str, int] = MappingProxyType(
            {entry.id: idx for idx, entry in enumerate(self._entries)}
        )

    @classmethod
    def empty(cls) -> CatalogStore:
        return cls((), version="empty")

    @property
    def entries(self) -> tuple[CatalogEntry, ...]:
        return self._entries

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def norms(self) -> np.ndarray:
        return self._norms

    @property
    def dim(self) -> int:
        return self._matrix.shape[1] if self._entries else 0

    def get(self, entry_id: str) -> CatalogEntry | None:
        idx = self._by_id.get(entry_id)
        return self._entries[idx] if idx is not None else None

    def position(self, entry_id: str) -> int:
        return self._by_id.get(entry_id, -1)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._by_id

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"CatalogStore(version={self.version!r}, entries={len(self)}, dim={self.dim})"


def _records_from_document(document: Any) -> tuple[list[Any], str]:
    """Accept either a bare list or ``{"version": ..., "entries": [...]}``."""
    if isinstance(document, list):
        return document, "unversioned"
    if isinstance(document, dict):
        records = document.get("entries", document.get("items"))
        if isinstance(records, list):
            return records, str(document.get("version") or "unversioned")
    raise CatalogLoadError("Snapshot must be a list of entries or an object with an 'entries' list")


def parse_snapshot(raw: bytes | str, *, expected_dim: int | None = None) -> CatalogStore:
    """Parse and validate a catalog snapshot.

    Args:
        raw: Snapshot file content (JSON)
        expected_dim: Required embedding dimension, if known

    Returns:
        Validated, immutable CatalogStore

    Raises:
        CatalogLoadError: If the snapshot is malformed, empty, has duplicate
            ids, non-finite values, or inconsistent embedding lengths
    """
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CatalogLoadError(f"Snapshot is not valid JSON: {e}") from e

    records, version = _records_from_document(document)
    if not records:
        raise CatalogLoadError("Snapshot contains no catalog entries")

    entries: list[CatalogEntry] = []
    seen_ids: set[str] = set()
    dim = expected_dim

    for idx, record in enumerate(records):
        try:
            parsed = SnapshotEntry.model_validate(record)
        except ValidationError as e:
            raise CatalogLoadError(f"Invalid snapshot entry at index {idx}: {e}") from e

        if parsed.id in seen_ids:
            raise CatalogLoadError(f"Duplicate catalog id '{parsed.id}' at index {idx}")
        seen_ids.add(parsed.id)

        vector = tuple(parsed.embedding)
        if dim is None:
            dim = len(vector)
        elif len(vector) != dim:
            raise CatalogLoadError(
                f"Embedding length mismatch for '{parsed.id}': expected {dim}, got {len(vector)}"
            )
        if not np.all(np.isfinite(vector)):
            raise CatalogLoadError(f"Embedding for '{parsed.id}' contains non-finite values")

        entries.append(CatalogEntry(
            id=parsed.id,
            title=parsed.title,
            embedding=vector,
            description=parsed.description,
            category=parsed.category,
            price=parsed.price,
        ))

    store = CatalogStore(entries, version=version)
    logger.info(f"Parsed catalog snapshot {version}: {len(store)} entries, dim={store.dim}")
    return store


def load_catalog(path: str | Path, *, expected_dim: int | None = None) -> CatalogStore:
    """Read and validate the snapshot file at ``path``.

    Raises:
        CatalogLoadError: If the file is missing, unreadable, or invalid
    """
    snapshot_path = Path(path)
    try:
        raw = snapshot_path.read_bytes()
    except FileNotFoundError as e:
        raise CatalogLoadError(f"Catalog snapshot not found: {snapshot_path}") from e
    except OSError as e:
        raise CatalogLoadError(f"Catalog snapshot unreadable: {snapshot_path}: {e}") from e

    logger.info(f"Loading catalog snapshot from {snapshot_path}")
    return parse_snapshot(raw, expected_dim=expected_dim)


_catalog: CatalogStore | None = None
_catalog_init_lock = threading.Lock()


def get_catalog() -> CatalogStore:
    """Process-wide catalog, loaded exactly once.

    The first caller loads under the initialization lock; later callers read
    the published store without locking. A failed load is not cached.
    """
    global _catalog
    store = _catalog
    if store is not None:
        return store

    with _catalog_init_lock:
        if _catalog is None:
            _catalog = load_catalog(
                settings.catalog.snapshot_path,
                expected_dim=settings.catalog.expected_dim,
            )
        return _catalog


def reset_catalog() -> None:
    """Drop the cached catalog (tests and redeploy hooks only)."""
    global _catalog
    with _catalog_init_lock:
        _catalog = None
