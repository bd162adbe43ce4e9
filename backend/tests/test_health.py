"""Liveness and configuration tests for the backend."""

from fastapi.testclient import TestClient

from app.config import Settings
from app.main import app


class TestLiveness:
    """The root endpoint answers without a database."""

    def test_root_returns_plain_text(self) -> None:
        client = TestClient(app)
        response = client.get("/")

        assert response.status_code == 200
        assert response.text == "Backend is running"
        assert response.headers["content-type"].startswith("text/plain")


class TestSettings:
    """Settings read the DB_* variables the deployment injects."""

    def test_reads_database_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("DB_NAME", "appdb")
        monkeypatch.setenv("DB_USER", "postgres")
        monkeypatch.setenv("DB_PASSWORD", "p@ss/word")

        settings = Settings(_env_file=None)
        url = settings.database_url

        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db.internal"
        assert url.port == 6543
        assert url.database == "appdb"
        assert url.username == "postgres"
        assert url.password == "p@ss/word"

    def test_defaults(self, monkeypatch) -> None:
        for name in ("DB_HOST", "DB_PORT", "DB_NAME", "PORT"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.db_port == 5432
        assert settings.port == 3000
        assert settings.db_ssl is True
