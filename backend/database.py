import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Optional

from config import Config
from models import Tag, Task, compute_points

DATABASE_PATH = Config.DATABASE_PATH

TASK_COLUMNS = (
    "name", "link", "note", "importance", "complexity", "planned_date", "due_date",
    "parent_id", "position", "completed",
)

@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    # Deleting a task removes its subtasks and tag links
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()

def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess
    import os

    # Run alembic upgrade from the backend directory
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        check=True
    )

def _now() -> str:
    return datetime.now().isoformat()

def _date_to_db(value) -> Optional[str]:
    if isinstance(value, date):
        return value.isoformat()
    return value or None

def _row_to_tag(row) -> Tag:
    return Tag(id=row["id"], name=row["name"], color=row["color"], owner_id=row["owner_id"])

def _row_to_task(row, tags: Optional[list[Tag]] = None) -> Task:
    """Convert a database row to a Task model."""
    keys = row.keys()
    return Task(
        id=row["id"],
        name=row["name"],
        link=row["link"],
        note=row["note"],
        importance=row["importance"],
        complexity=row["complexity"],
        planned_date=row["planned_date"],
        due_date=row["due_date"],
        parent_id=row["parent_id"],
        parent_name=row["parent_name"] if "parent_name" in keys else None,
        position=row["position"],
        completed=bool(row["completed"]),
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        owner_id=row["owner_id"],
        tags=tags or [],
    )

TASK_SELECT = """
    SELECT t.*, p.name AS parent_name
    FROM tasks t
    LEFT JOIN tasks p ON p.id = t.parent_id
"""

def _tags_for_tasks(conn, task_ids: Iterable[str]) -> dict[str, list[Tag]]:
    """Fetch tags for many tasks in one query, keyed by task id."""
    task_ids = list(task_ids)
    if not task_ids:
        return {}
    placeholders = ", ".join("?" for _ in task_ids)
    rows = conn.execute(
        f"""SELECT tt.task_id, g.* FROM task_tags tt
            JOIN tags g ON g.id = tt.tag_id
            WHERE tt.task_id IN ({placeholders})
            ORDER BY tt.rowid""",
        task_ids
    ).fetchall()
    tags: dict[str, list[Tag]] = {}
    for row in rows:
        tags.setdefault(row["task_id"], []).append(_row_to_tag(row))
    return tags

def _rows_to_tasks(conn, rows) -> list[Task]:
    tags = _tags_for_tasks(conn, (row["id"] for row in rows))
    return [_row_to_task(row, tags.get(row["id"])) for row in rows]

def _set_task_tags(conn, task_id: str, tag_ids: Iterable[str]):
    conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
    seen = set()
    for tag_id in tag_ids:
        if tag_id in seen:
            continue
        seen.add(tag_id)
        conn.execute(
            "INSERT INTO task_tags (task_id, tag_id) VALUES (?, ?)",
            (task_id, tag_id)
        )

# Task operations
def create_task_db(
    task_id: str,
    owner_id: str,
    name: str,
    importance: int = 50,
    complexity: int = 1,
    link: Optional[str] = None,
    note: Optional[str] = None,
    planned_date: Optional[date] = None,
    due_date: Optional[date] = None,
    parent_id: Optional[str] = None,
    position: Optional[int] = None,
    tag_ids: Optional[list[str]] = None,
) -> Task:
    """Create a task; points are derived from importance and complexity.
    New tasks default to importance 50 / complexity 1, the maximum 500 points.
    """
    created_at = _now()
    # Validates ranges before anything is written
    task = Task(
        id=task_id,
        name=name,
        link=link,
        note=note,
        importance=importance,
        complexity=complexity,
        planned_date=planned_date,
        due_date=due_date,
        parent_id=parent_id,
        position=position,
        created_at=created_at,
        updated_at=created_at,
        owner_id=owner_id,
    )

    with get_db() as conn:
        conn.execute(
            """INSERT INTO tasks
               (id, name, link, note, importance, complexity, points, planned_date, due_date,
                parent_id, position, completed, completed_at, created_at, updated_at, owner_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, ?, ?)""",
            (task.id, task.name, task.link, task.note, task.importance, task.complexity,
             task.points, _date_to_db(task.planned_date), _date_to_db(task.due_date),
             task.parent_id, task.position, created_at, created_at, owner_id)
        )
        if tag_ids:
            _set_task_tags(conn, task_id, tag_ids)
        conn.commit()

    return get_task_db(task_id)

def get_task_db(task_id: str, owner_id: Optional[str] = None) -> Optional[Task]:
    """Fetch one task with its tags. When owner_id is given, other owners' tasks are hidden."""
    with get_db() as conn:
        row = conn.execute(TASK_SELECT + " WHERE t.id = ?", (task_id,)).fetchone()
        if not row or (owner_id is not None and row["owner_id"] != owner_id):
            return None
        return _rows_to_tasks(conn, [row])[0]

def get_all_tasks(owner_id: str, include_completed: bool = False) -> list[Task]:
    """Flat list of an owner's tasks in creation order."""
    query = TASK_SELECT + " WHERE t.owner_id = ?"
    if not include_completed:
        query += " AND t.completed = 0"
    query += " ORDER BY t.created_at, t.rowid"
    with get_db() as conn:
        rows = conn.execute(query, (owner_id,)).fetchall()
        return _rows_to_tasks(conn, rows)

def get_completed_tasks(owner_id: str) -> list[Task]:
    """Completed tasks, most recently completed first."""
    with get_db() as conn:
        rows = conn.execute(
            TASK_SELECT + " WHERE t.owner_id = ? AND t.completed = 1 ORDER BY t.completed_at DESC, t.rowid DESC",
            (owner_id,)
        ).fetchall()
        return _rows_to_tasks(conn, rows)

def assemble_tree(tasks: list[Task]) -> list[Task]:
    """
    Nest a flat task list under parent_id.
    Tasks whose parent is not in the list are returned as roots.
    """
    by_id = {task.id: task for task in tasks}
    children: dict[str, list[Task]] = {}
    roots: list[Task] = []
    for task in tasks:
        if task.parent_id and task.parent_id in by_id and task.parent_id != task.id:
            children.setdefault(task.parent_id, []).append(task)
        else:
            roots.append(task)

    def build(task: Task) -> Task:
        return task.model_copy(update={
            "subtasks": [build(child) for child in children.get(task.id, [])]
        })

    return [build(root) for root in roots]

def get_task_tree(owner_id: str, include_completed: bool = False) -> list[Task]:
    return assemble_tree(get_all_tasks(owner_id, include_completed))

def is_descendant_db(task_id: str, candidate_id: str) -> bool:
    """True if candidate_id is task_id itself or sits anywhere below it."""
    with get_db() as conn:
        current = candidate_id
        visited = set()
        while current and current not in visited:
            if current == task_id:
                return True
            visited.add(current)
            row = conn.execute("SELECT parent_id FROM tasks WHERE id = ?", (current,)).fetchone()
            current = row["parent_id"] if row else None
    return False

def update_task_db(task_id: str, **updates) -> Optional[Task]:
    """
    Update a task with any fields provided.
    Only updates fields that differ from current values.

    Args:
        task_id: Task ID to update
        **updates: Task fields (see TASK_COLUMNS) and optionally tag_ids
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if not row:
            return None

        tag_ids = updates.pop("tag_ids", None)

        # Filter updates: only include fields that differ from current values
        changes = {}
        for field, new_value in updates.items():
            if field not in TASK_COLUMNS:
                continue
            if isinstance(new_value, bool):
                new_value = int(new_value)
            else:
                new_value = _date_to_db(new_value) if isinstance(new_value, date) else new_value
            if new_value != row[field]:
                changes[field] = new_value

        if "completed" in changes:
            changes["completed_at"] = _now() if changes["completed"] else None

        if "importance" in changes or "complexity" in changes:
            importance = changes.get("importance", row["importance"])
            complexity = changes.get("complexity", row["complexity"])
            # Validates the new combination and keeps the stored score in step
            Task.model_validate({**dict(row), "importance": importance, "complexity": complexity})
            changes["points"] = compute_points(importance, complexity)

        if changes or tag_ids is not None:
            changes["updated_at"] = _now()
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            values = list(changes.values()) + [task_id]
            conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ?", values)
            if tag_ids is not None:
                _set_task_tags(conn, task_id, tag_ids)
            conn.commit()

    # Return updated task (re-fetch to get current state)
    return get_task_db(task_id)

def delete_task_db(task_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        conn.commit()
        return cursor.rowcount > 0

# Tag operations
def create_tag_db(tag_id: str, name: str, owner_id: str, color: Optional[str] = None) -> Tag:
    color = color or Config.DEFAULT_TAG_COLOR
    with get_db() as conn:
        conn.execute(
            "INSERT INTO tags (id, name, color, owner_id) VALUES (?, ?, ?, ?)",
            (tag_id, name, color, owner_id)
        )
        conn.commit()
    return Tag(id=tag_id, name=name, color=color, owner_id=owner_id)

def get_tag_db(tag_id: str, owner_id: Optional[str] = None) -> Optional[Tag]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        if not row or (owner_id is not None and row["owner_id"] != owner_id):
            return None
        return _row_to_tag(row)

def find_tag_by_name_db(name: str, owner_id: str) -> Optional[Tag]:
    """Exact, case-sensitive match on the tag name for one owner."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM tags WHERE name = ? AND owner_id = ?",
            (name, owner_id)
        ).fetchone()
        if row:
            return _row_to_tag(row)
    return None

def get_all_tags(owner_id: str) -> list[Tag]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM tags WHERE owner_id = ? ORDER BY name",
            (owner_id,)
        ).fetchall()
        return [_row_to_tag(row) for row in rows]

def update_tag_db(tag_id: str, **updates) -> Optional[Tag]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        if not row:
            return None

        changes = {
            field: value for field, value in updates.items()
            if field in ("name", "color") and value is not None and value != row[field]
        }
        if changes:
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            conn.execute(f"UPDATE tags SET {set_clause} WHERE id = ?", list(changes.values()) + [tag_id])
            conn.commit()

        updated_row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        return _row_to_tag(updated_row)

def delete_tag_db(tag_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        conn.commit()
        return cursor.rowcount > 0
