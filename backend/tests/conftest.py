"""
Shared pytest fixtures for backend tests.
Each test gets its own SQLite file so nothing leaks between tests.
"""
import pytest
import sqlite3
import sys
import os
from datetime import date

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from models import Task
from prioritization import DateContext

OWNER = "owner-1"

SCHEMA = """
    CREATE TABLE tasks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        link TEXT,
        note TEXT,
        importance INTEGER NOT NULL DEFAULT 50,
        complexity INTEGER NOT NULL DEFAULT 1,
        points INTEGER NOT NULL DEFAULT 500,
        planned_date TEXT,
        due_date TEXT,
        parent_id TEXT REFERENCES tasks(id) ON DELETE CASCADE,
        position INTEGER,
        completed INTEGER DEFAULT 0,
        completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        owner_id TEXT NOT NULL
    );

    CREATE TABLE tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        color TEXT,
        owner_id TEXT NOT NULL,
        UNIQUE (name, owner_id)
    );

    CREATE TABLE task_tags (
        task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
        PRIMARY KEY (task_id, tag_id)
    );
"""


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def app_client(test_db, monkeypatch):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations.
    """
    from fastapi.testclient import TestClient
    import main

    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def today():
    return date(2025, 6, 15)


@pytest.fixture
def context(today):
    return DateContext.for_date(today)


@pytest.fixture
def make_task():
    """Build in-memory tasks without touching the database."""
    counter = {"n": 0}

    def _make(name, importance=25, complexity=5, planned_date=None, due_date=None,
              position=None, subtasks=None, **extra):
        counter["n"] += 1
        return Task(
            id=extra.pop("id", f"task-{counter['n']}"),
            name=name,
            importance=importance,
            complexity=complexity,
            planned_date=planned_date,
            due_date=due_date,
            position=position,
            subtasks=subtasks or [],
            created_at=f"2025-01-01T00:00:{counter['n']:02d}",
            updated_at=f"2025-01-01T00:00:{counter['n']:02d}",
            owner_id=OWNER,
            **extra,
        )

    return _make
