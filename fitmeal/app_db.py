# -*- coding: utf-8 -*-
"""App database (protocol plans/instances): SQLite helpers."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# Concurrent writers wait on the database lock instead of failing immediately.
_BUSY_TIMEOUT_SEC = 30.0


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=_BUSY_TIMEOUT_SEC, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_app_db(db_path: Path) -> None:
    conn = connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS protocol_plans (
                id TEXT PRIMARY KEY,
                owner_trainer_id TEXT NOT NULL,
                plan_name TEXT NOT NULL,
                plan_description TEXT,
                wizard_configuration TEXT NOT NULL,
                is_template INTEGER NOT NULL DEFAULT 0,
                usage_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_used_at TEXT,
                archived_at TEXT
            );
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_protocol_plans_owner_created ON protocol_plans(owner_trainer_id, created_at DESC);"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS protocol_instances (
                id TEXT PRIMARY KEY,
                plan_id TEXT NOT NULL,
                plan_name TEXT NOT NULL,
                customer_id TEXT NOT NULL,
                trainer_id TEXT NOT NULL,
                status TEXT NOT NULL,
                artifact_json TEXT NOT NULL,
                assigned_at TEXT NOT NULL,
                acknowledged_at TEXT,
                FOREIGN KEY(plan_id) REFERENCES protocol_plans(id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_protocol_instances_plan_status ON protocol_instances(plan_id, status);"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_protocol_instances_customer_assigned ON protocol_instances(customer_id, assigned_at DESC);"
        )
        conn.commit()
    finally:
        conn.close()


@contextmanager
def db_conn(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = connect(db_path)
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()
