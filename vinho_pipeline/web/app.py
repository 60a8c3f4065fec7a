"""FastAPI application factory for the Vinho Pipeline queue API."""

from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from vinho_pipeline import __version__
from vinho_pipeline.db.engine import init_db

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Vinho Pipeline",
        description="Wine-label scan queue and visual recommendations",
        version=__version__,
    )

    # Initialize database tables
    init_db()

    # Include routers (import here to avoid circular imports)
    from vinho_pipeline.web.routes import queue, wines

    app.include_router(queue.router)
    app.include_router(wines.router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


# Application instance
app = create_app()
