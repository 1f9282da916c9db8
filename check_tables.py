from sqlalchemy import inspect, text

from backend.app.db import engine

TABLES = ("custodians", "operators", "validators", "stake_events", "daily_snapshots", "exceptions")

with engine.begin() as conn:
    existing = set(inspect(conn).get_table_names())
    for name in TABLES:
        print(f"{name} exists:", name in existing)

    if "alembic_version" in existing:
        v = conn.execute(text("select version_num from alembic_version")).scalar()
        print("DB says current revision:", v)
    else:
        print("alembic_version table exists: False")
