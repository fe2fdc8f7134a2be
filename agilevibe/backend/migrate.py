"""Apply SQL schema for the PostgreSQL replication backend."""

from __future__ import annotations

from pathlib import Path

from agilevibe.backend.config import load_settings


SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")


def apply_schema(database_url: str) -> None:
    import psycopg

    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    with psycopg.connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()


def main() -> None:
    settings = load_settings()
    if not settings.database_url:
        raise RuntimeError("AGILEVIBE_DATABASE_URL is required for migration")
    apply_schema(settings.database_url)


if __name__ == "__main__":
    main()
