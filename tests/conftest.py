"""Shared fixtures: a small catalog and fakes for the two external APIs."""
from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from ai.extraction import ConstrainedExtractor
from intent.catalog import CatalogStore
from intent.config import EmbeddingSettings, GenerationSettings, Settings
from intent.models import CatalogEntry
from intent.pipelines.resolution import IntentResolver

CATALOG_ROWS = [
    ("paint-interior-wall", "Interior Wall Painting", (1.0, 0.0, 0.0), 140.0),
    ("ceiling-painting", "Ceiling Painting", (0.9, 0.1, 0.0), 180.0),
    ("15-amp-outlet", "15 Amp Outlet Installation", (0.0, 1.0, 0.0), 100.0),
    ("exterior-door", "Exterior Door Installation", (0.0, 0.0, 1.0), 200.0),
]


def make_entries(rows=CATALOG_ROWS) -> list[CatalogEntry]:
    return [
        CatalogEntry(id=i, title=t, embedding=tuple(v), description=f"{t} service", price=p)
        for i, t, v, p in rows
    ]


def snapshot_json(rows=CATALOG_ROWS, **extra: Any) -> str:
    entries = [{"id": i, "title": t, "embedding": list(v), "price": p} for i, t, v, p in rows]
    if extra:
        return json.dumps({"entries": entries, **extra})
    return json.dumps(entries)


class FakeEmbedder:
    """Maps text to vectors; can fail or hang on demand."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0, 0.0]
        self.calls: list[str] = []
        self.error: Exception | None = None
        self.hang = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return self.vectors.get(text, self.default)


class FakeGenerator:
    """Returns scripted model output and records the prompts it was given."""

    def __init__(self, output: str | Callable[..., str] = "", description: str = ""):
        self.output = output
        self.description = description
        self.calls: list[dict[str, Any]] = []
        self.image_calls: list[tuple[bytes, str]] = []
        self.error: Exception | None = None
        self.hang = False

    async def generate(self, system_prompt, user_prompt=None, *, schema_hint=None, messages=None, max_tokens=None):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "schema_hint": schema_hint,
            "messages": messages,
        })
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return self.output(system_prompt, user_prompt) if callable(self.output) else self.output

    async def describe_image(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        self.image_calls.append((image_bytes, mime_type))
        if self.error is not None:
            raise self.error
        return self.description


def model_reply(*ids: str, summary: str = "User wants painting", notes: str = "", quantity: Any = 2) -> str:
    return json.dumps({
        "items": [{"id": i, "title": "whatever", "description": f"do {i}", "estimatedQuantity": quantity} for i in ids],
        "summary": summary,
        "notes": notes,
    })


@pytest.fixture
def catalog() -> CatalogStore:
    return CatalogStore(make_entries(), version="test-v1")


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator(output=model_reply("paint-interior-wall"))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        embeddings=EmbeddingSettings(timeout_seconds=0.2, dim=None),
        generation=GenerationSettings(timeout_seconds=0.2),
    )


@pytest.fixture
def make_resolver(catalog, embedder, generator, test_settings):
    def _make(store: CatalogStore | None = None) -> IntentResolver:
        store = catalog if store is None else store
        return IntentResolver(
            catalog=store,
            embedder=embedder,
            extractor=ConstrainedExtractor(generator, store),
            describer=generator,
            config=test_settings,
        )
    return _make


@pytest.fixture
def resolver(make_resolver) -> IntentResolver:
    return make_resolver()

