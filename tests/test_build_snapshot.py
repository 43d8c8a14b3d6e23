"""Offline snapshot builder."""
import json

import build_snapshot
from config.service_catalog import SERVICE_CATALOG
from intent.catalog import load_catalog


class StubBatchEmbedder:
    async def embed_batch(self, texts):
        return [[float(i + 1), 1.0, 0.5] for i, _ in enumerate(texts)]


async def test_build_snapshot_writes_loadable_file(tmp_path, monkeypatch):
    monkeypatch.setattr(build_snapshot, "build_embedder", StubBatchEmbedder)
    output = tmp_path / "data" / "snapshot.json"

    await build_snapshot.build_snapshot(output, "catalog-test")

    document = json.loads(output.read_text(encoding="utf-8"))
    assert document["version"] == "catalog-test"
    assert document["dim"] == 3
    assert len(document["entries"]) == len(SERVICE_CATALOG)

    store = load_catalog(output)
    assert store.version == "catalog-test"
    assert len(store) == len(SERVICE_CATALOG)
    assert store.get(SERVICE_CATALOG[0]["id"]).title == SERVICE_CATALOG[0]["title"]


def test_service_catalog_ids_are_unique():
    ids = [svc["id"] for svc in SERVICE_CATALOG]
    assert len(ids) == len(set(ids))
    assert all(svc["title"] for svc in SERVICE_CATALOG)
