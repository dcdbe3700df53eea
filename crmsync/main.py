"""
CRM Sync - FastAPI Application Entry Point.

Serves the read-only sync status API. Syncing itself runs from the CLI
(`crmsync sync ...`) or the daemon (`crmsync sync daemon`).
"""
import logging

from fastapi import FastAPI

from crmsync.routes import sync

logger = logging.getLogger(__name__)

app = FastAPI(
    title="CRM Sync",
    description="Incremental Google Contacts, Calendar and Gmail sync for a local CRM",
    version="0.1.0",
)

# Include routers
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies configuration."""
    from config.settings import settings

    checks = {
        "google_oauth_configured": settings.google_oauth_configured,
        "token_present": settings.token_path_resolved.exists(),
    }

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "crmsync",
        "checks": checks,
    }
