"""
Migration V1 -> V2
- Adds 'role' (default 'user') and 'last_sign_in' columns to principals if missing
- Backfills NULL roles as 'user'
- Creates the 'feature_permissions' and 'write_intents' tables if missing

Principals keep default-allow order permissions: no feature_permissions rows
are written.

Usage:
  python -m migration.migration_v1_to_v2 --db path/to/salesdesk.db
"""
import argparse
import os
import sqlite3
from contextlib import closing


def has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cur.fetchall())


def migrate(db_path: str):
    if db_path == ":memory:":
        raise ValueError("Use a file-backed DB for migration script")

    if not os.path.exists(db_path):
        raise FileNotFoundError(db_path)

    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("PRAGMA foreign_keys=ON")

        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        if "principals" not in tables:
            raise RuntimeError("principals table missing; cannot migrate")

        if not has_column(conn, "principals", "role"):
            conn.execute("ALTER TABLE principals ADD COLUMN role TEXT NOT NULL DEFAULT 'user'")
        if not has_column(conn, "principals", "last_sign_in"):
            conn.execute("ALTER TABLE principals ADD COLUMN last_sign_in DATETIME")
        conn.execute("UPDATE principals SET role = 'user' WHERE role IS NULL")

        conn.execute(
            "CREATE TABLE IF NOT EXISTS feature_permissions ("
            " principal_id INTEGER PRIMARY KEY REFERENCES principals(id) ON DELETE CASCADE,"
            " can_create BOOLEAN NOT NULL DEFAULT 1,"
            " can_edit BOOLEAN NOT NULL DEFAULT 1,"
            " can_delete BOOLEAN NOT NULL DEFAULT 1,"
            " updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        )
        conn.execute(
            "CREATE TABLE IF NOT EXISTS write_intents ("
            " id INTEGER PRIMARY KEY,"
            " kind TEXT NOT NULL,"
            " order_id VARCHAR(8) NOT NULL,"
            " payload JSON NOT NULL,"
            " status TEXT NOT NULL DEFAULT 'pending',"
            " actor_id INTEGER,"
            " created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,"
            " completed_at DATETIME)"
        )
        conn.commit()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to SQLite database file")
    args = parser.parse_args()
    migrate(args.db)

if __name__ == "__main__":
    main()
