"""Health check endpoint for the credit rating API."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from credit_rating.persistence.db import is_postgres_configured

router = APIRouter(tags=["Health"])

API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    time: str
    version: str
    storage: str


@router.get("/health", response_model=HealthResponse, operation_id="getHealth")
def get_health() -> HealthResponse:
    """Health check endpoint. No authentication required.

    Reports which storage backend the services will use.
    """
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        version=API_VERSION,
        storage="postgres" if is_postgres_configured() else "memory",
    )
