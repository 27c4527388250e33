"""Initial schema - tasks, tags and their many-to-many link

Revision ID: 001
Revises: None
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            link TEXT,
            note TEXT,
            importance INTEGER NOT NULL DEFAULT 50 CHECK (importance BETWEEN 0 AND 50),
            complexity INTEGER NOT NULL DEFAULT 1 CHECK (complexity BETWEEN 1 AND 9),
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
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_owner ON tasks (owner_id, completed)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_parent ON tasks (parent_id)"))

    # Tag names are unique per owner and compared case-sensitively
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tags (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT,
            owner_id TEXT NOT NULL,
            UNIQUE (name, owner_id)
        )
    """))

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS task_tags (
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
            PRIMARY KEY (task_id, tag_id)
        )
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS task_tags"))
    conn.execute(text("DROP TABLE IF EXISTS tags"))
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
