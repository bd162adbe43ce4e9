"""Database connections package."""

from app.db.postgres import check_connection, engine, fetch_server_time, get_session

__all__ = ["check_connection", "engine", "fetch_server_time", "get_session"]
