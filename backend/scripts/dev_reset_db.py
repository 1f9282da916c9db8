from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _load_database_url(cli_url: str | None) -> str:
    database_url = cli_url or os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if not database_url:
        raise RuntimeError("Pass --url or set DATABASE_URL.")
    return database_url


def _alembic_config(database_url: str) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def _reset_postgres_db(database_url: str) -> None:
    url = make_url(database_url)
    if not url.database:
        raise RuntimeError("Postgres URL is missing a database name.")

    engine = create_engine(url.set(database="postgres"), future=True, isolation_level="AUTOCOMMIT")
    try:
        with engine.connect() as conn:
            conn.execute(
                text(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = :db_name AND pid <> pg_backend_pid()"
                ),
                {"db_name": url.database},
            )
            conn.execute(text(f'DROP DATABASE IF EXISTS "{url.database}"'))
            conn.execute(text(f'CREATE DATABASE "{url.database}"'))
    finally:
        engine.dispose()


def _reset_sqlite_db(database_url: str) -> None:
    url = make_url(database_url)
    if url.database and url.database != ":memory:":
        Path(url.database).unlink(missing_ok=True)


def _seed(database_url: str) -> bool:
    os.environ.setdefault("DATABASE_URL", database_url)
    from backend.app.seed.run import seed_demo_portfolio

    engine = create_engine(database_url, future=True)
    session = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        return seed_demo_portfolio(session)
    finally:
        session.close()
        engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Drop, migrate and optionally seed the portfolio database.")
    parser.add_argument("--url", help="Override the database URL.")
    parser.add_argument("--yes", action="store_true", help="Confirm destructive reset.")
    parser.add_argument("--seed", action="store_true", help="Seed a demo portfolio with 90 days of rewards.")
    args = parser.parse_args()

    if not args.yes:
        print("Refusing to reset database without --yes.")
        return 1

    database_url = _load_database_url(args.url)
    backend = make_url(database_url).get_backend_name()
    if backend.startswith("postgres"):
        _reset_postgres_db(database_url)
    elif backend.startswith("sqlite"):
        _reset_sqlite_db(database_url)
    else:
        print(f"Unsupported database backend: {backend}")
        return 1

    command.upgrade(_alembic_config(database_url), "head")

    if args.seed and not _seed(database_url):
        print("Seed skipped: portfolio data already present.")

    print("DONE")
    print(f"Database URL: {make_url(database_url).render_as_string(hide_password=True)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
