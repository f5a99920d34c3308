"""Main FastAPI application entry point."""

from dotenv import load_dotenv

from spotbot.config import BASE_DIR, get_settings
from spotbot.core.app_factory import create_app
from spotbot.logging_config import setup_logging

# Load environment variables from .env file
load_dotenv(BASE_DIR / ".env")

# Configure structured logging (JSON to file + console)
setup_logging(get_settings().log_level)

# Create application
app = create_app()


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "spotbot engine", "docs": "/docs", "ready": "/health/ready"}


def run() -> None:
    """Console entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "spotbot.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
