"""Health check endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from explainer.api.deps import get_db
from explainer.logging import get_logger
from explainer.responses import success_response

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
def health_check(db: Annotated[Session, Depends(get_db)]) -> JSONResponse:
    """Liveness plus a database round trip.

    Returns 200 when the database answers, 503 otherwise.
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health.database_unavailable", error=type(e).__name__)
        return JSONResponse(
            status_code=503,
            content=success_response({"status": "degraded", "database": "unavailable"}),
        )
    return JSONResponse(content=success_response({"status": "ok", "database": "ok"}))
