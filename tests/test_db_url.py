import pytest

from app.db.url import normalize_database_url


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("postgres://u:p@db:5432/loans", "postgresql+asyncpg://u:p@db:5432/loans"),
        ("postgresql+psycopg://u:p@db/loans?sslmode=require", "postgresql+asyncpg://u:p@db/loans?ssl=require"),
        ("postgresql://u:p@db/loans?sslmode=disable", "postgresql+asyncpg://u:p@db/loans?ssl=disable"),
        ("postgresql+asyncpg://u:p@db/loans?ssl=true", "postgresql+asyncpg://u:p@db/loans?ssl=require"),
        ("", ""),
    ],
)
def test_normalize_database_url(raw, expected) -> None:
    assert normalize_database_url(raw) == expected
