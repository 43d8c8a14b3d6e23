"""Main entry point for running the FastAPI application with auto-reload."""
import uvicorn

from intent.config import settings

if __name__ == "__main__":
    print(f"Starting {settings.app_name} v{settings.version}")
    print(f"Debug mode: {settings.debug}")
    print(f"Catalog snapshot: {settings.catalog.snapshot_path}")
    print(f"Models: embed={settings.embeddings.model_name} text={settings.generation.text_model}")
    print(f"Auto-reload: {'Enabled' if settings.debug else 'Disabled'}")
    print("-" * 50)

    uvicorn.run(
        "intent.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["intent", "ai", "config"] if settings.debug else None,
        reload_includes=["*.py", "*.json"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
