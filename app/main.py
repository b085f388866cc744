"""FastAPI application."""

import logging

from fastapi import Depends, FastAPI

from app.api.tasks import router as tasks_router
from app.core.auth import verify_api_key
from app.core.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Coding Agent API",
    description="Runs coding agents against repositories in isolated sandboxes",
    version="0.1.0",
)

app.include_router(tasks_router, prefix="/v1", tags=["tasks"])


@app.get("/health")
def health_check(api_key: str = Depends(verify_api_key)):
    """Health check endpoint."""
    return {"status": "healthy"}
