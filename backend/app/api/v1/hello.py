"""Diagnostic endpoint backed by a query against the database."""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.postgres import fetch_server_time, get_session
from app.schemas.hello import DatabaseErrorResponse, HelloResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/hello",
    response_model=HelloResponse,
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": DatabaseErrorResponse}},
)
async def hello(session: AsyncSession = Depends(get_session)) -> HelloResponse | JSONResponse:
    """Return a greeting with the database time, proving the connection works."""
    try:
        now = await fetch_server_time(session)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Diagnostic query failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=DatabaseErrorResponse(detail=str(exc)).model_dump(),
        )
    return HelloResponse(message="Hello from backend", time=now)
