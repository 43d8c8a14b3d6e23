"""Build the catalog embedding snapshot consumed by the resolution engine.

Embeds every service title from ``config/service_catalog.py`` and writes a
versioned snapshot file. Run this offline whenever the catalog changes,
then redeploy with the new file.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from ai.embeddings import build_embedder
from config.service_catalog import CATALOG_VERSION, SERVICE_CATALOG
from intent.catalog import parse_snapshot
from intent.config import settings


async def build_snapshot(output: Path, version: str) -> None:
    """Embed all catalog services and write the snapshot file."""
    model_name = (
        settings.embeddings.local_model_name
        if settings.embeddings.provider == "local"
        else settings.embeddings.model_name
    )
    print(f"Embedding {len(SERVICE_CATALOG)} services with {model_name}")

    embedder = build_embedder()
    vectors = await embedder.embed_batch([svc["title"] for svc in SERVICE_CATALOG])
    print(f"✓ Embedded {len(vectors)} services")

    document = {
        "version": version,
        "provider": settings.embeddings.provider,
        "model": model_name,
        "dim": len(vectors[0]) if vectors else 0,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "entries": [
            {
                "id": svc["id"],
                "title": svc["title"],
                "description": svc.get("description", ""),
                "category": svc.get("category", ""),
                "price": svc.get("price"),
                "embedding": vector,
            }
            for svc, vector in zip(SERVICE_CATALOG, vectors)
        ],
    }
    raw = json.dumps(document, ensure_ascii=False)

    # Refuse to write a snapshot the server would refuse to load
    store = parse_snapshot(raw)
    print(f"✓ Validated snapshot: {len(store)} entries, dim={store.dim}")

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(raw, encoding="utf-8")
    print(f"\n✅ Saved snapshot {version} to {output}")


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--output", type=Path, default=Path(settings.catalog.snapshot_path))
    parser.add_argument("--version", default=CATALOG_VERSION)
    args = parser.parse_args()

    try:
        await build_snapshot(args.output, args.version)
    except Exception as e:
        print(f"\n❌ Error building snapshot: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
