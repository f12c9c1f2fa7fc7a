import os
import sqlite3
import tempfile

import pytest

from migration.migration_v1_to_v2 import migrate


def create_v1_db(path: str):
    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(
            "CREATE TABLE principals (id INTEGER PRIMARY KEY, email TEXT NOT NULL UNIQUE, display_name TEXT,"
            " password_hash TEXT, created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        )
        # Seed data
        conn.execute("INSERT INTO principals (email) VALUES ('alice@example.com'), ('bob@example.com')")
        conn.commit()
    finally:
        conn.close()


def test_migration_adds_role_and_permissions_table():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = os.path.join(tmp, "test.db")
        create_v1_db(db_path)

        # Run migration twice; the second run is a no-op
        migrate(db_path)
        migrate(db_path)

        conn = sqlite3.connect(db_path)
        try:
            cols = [r[1] for r in conn.execute("PRAGMA table_info(principals)").fetchall()]
            assert "role" in cols
            assert "last_sign_in" in cols

            rows = conn.execute("SELECT email, role FROM principals ORDER BY id").fetchall()
            assert rows == [("alice@example.com", "user"), ("bob@example.com", "user")]

            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert {"feature_permissions", "write_intents"} <= tables
            # default-allow: no permission rows are written
            assert conn.execute("SELECT COUNT(*) FROM feature_permissions").fetchone()[0] == 0
        finally:
            conn.close()


def test_migration_requires_principals_table():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = os.path.join(tmp, "empty.db")
        sqlite3.connect(db_path).close()
        with pytest.raises(RuntimeError):
            migrate(db_path)


def test_migration_rejects_memory_and_missing_files():
    with pytest.raises(ValueError):
        migrate(":memory:")
    with pytest.raises(FileNotFoundError):
        migrate("/nonexistent/salesdesk.db")
