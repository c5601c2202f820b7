"""Main FastAPI application entry point."""

from pathlib import Path

from dotenv import load_dotenv
from fastapi.responses import Response

from music_dashboard.config import get_settings
from music_dashboard.core.app_factory import create_app
from music_dashboard.logging_config import setup_logging

load_dotenv(Path(__file__).parent.parent / ".env")

settings = get_settings()
setup_logging(
    settings.log_level,
    log_dir=settings.log_dir,
    max_bytes=settings.log_file_max_mb * 1024 * 1024,
    backup_count=settings.log_file_backups,
)

app = create_app()


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Music Dashboard API", "docs": "/docs"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon to prevent 404 errors."""
    return Response(content=b"", media_type="image/x-icon")


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "music_dashboard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
