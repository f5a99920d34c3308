"""Application factory for creating and configuring the FastAPI app."""

from fastapi import FastAPI

from spotbot import __version__
from spotbot.config import get_settings
from spotbot.core.lifespan import lifespan
from spotbot.core.middleware import setup_middleware
from spotbot.middleware.error_handlers import register_error_handlers
from spotbot.routers import health_router, oauth_router, spotify_router


def custom_openapi(app: FastAPI):
    """Generate custom OpenAPI schema with security scheme."""
    if app.openapi_schema:
        return app.openapi_schema

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "API Key",
            "description": "Enter your API key",
        }
    }

    for path, path_item in openapi_schema.get("paths", {}).items():
        for method, operation in path_item.items():
            if method in ["get", "post", "put", "delete", "patch"]:
                if path.startswith("/api/") or path == "/debug":
                    operation["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="spotbot",
        description="""
        Resilient Spotify session and playback-state engine behind a chat bot.

        ## Authentication
        Operator endpoints under `/api/` and `/debug` require `Authorization: Bearer <BOT_API_KEY>`.

        ## Spotify authorization
        On first start the automation browser opens the Spotify consent page;
        Spotify redirects to `/spotify` with the authorization code and the
        refresh token is saved to `.env`.

        ## Health & Monitoring
        - `/health` - Basic health check
        - `/health/ready` - Readiness probe (authorized, realtime connected)
        - `/debug` - Engine state and diagnostics (requires auth)
        """,
        version=__version__,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)

    register_error_handlers(app)

    # OAuth redirect callback - no prefix, no API key
    app.include_router(oauth_router.router, tags=["oauth"])

    app.include_router(health_router.router, tags=["health"])

    app.include_router(spotify_router.router, prefix="/api/spotify", tags=["spotify"])

    app.openapi = lambda: custom_openapi(app)

    return app
