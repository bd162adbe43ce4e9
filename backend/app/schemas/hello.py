"""Schemas for the diagnostic endpoint."""

from datetime import datetime

from pydantic import BaseModel


class HelloResponse(BaseModel):
    """Greeting plus the database's current time."""

    message: str
    time: datetime


class DatabaseErrorResponse(BaseModel):
    error: str = "Database error"
    detail: str
