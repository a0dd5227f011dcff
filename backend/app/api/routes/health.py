"""Health check endpoints.

- /health: liveness, always 200 while the process runs
- /healthz: readiness, checks the database and reports background work
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backend.app.api.dependencies import StudyServices, get_services
from backend.app.db.sql_repositories import SqlRepositoryProvider

logger = logging.getLogger(__name__)

router = APIRouter()


async def check_db(services: StudyServices) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    provider = services.provider
    if not isinstance(provider, SqlRepositoryProvider):
        return (True, "in_memory")

    try:
        async with provider.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return (False, f"error: {type(e).__name__}")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s."""
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    services: Annotated[StudyServices, Depends(get_services)],
) -> dict[str, Any] | JSONResponse:
    """Readiness check.

    Returns:
        200 with component status if the database is reachable
        503 otherwise
    """
    db_ok, db_status = await check_db(services)

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {
            "db": db_status,
            "ingestion_tasks": services.tasks.pending,
        },
    }

    if not db_ok:
        return JSONResponse(content=response_body, status_code=503)

    return response_body
