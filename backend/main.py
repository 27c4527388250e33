from contextlib import asynccontextmanager
import sqlite3
import uuid
from typing import Annotated

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

import database
from config import Config
from csv_codec import export_tasks_to_csv
from database import (
    create_tag_db,
    create_task_db,
    delete_tag_db,
    delete_task_db,
    get_all_tags,
    get_all_tasks,
    get_completed_tasks,
    get_tag_db,
    get_task_db,
    get_task_tree,
    is_descendant_db,
    update_tag_db,
    update_task_db,
)
from importer import import_batch
from models import ImportRequest, ImportResult, Tag, TagCreate, TagUpdate, Task, TaskCreate, TaskUpdate
from prioritization import DateContext, category_stats, sort_tasks


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    database.init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Authentication happens upstream; the caller names the owner in a header
OwnerId = Annotated[str, Header(alias="X-Owner-Id")]


def _check_parent(owner_id: str, parent_id: str | None, task_id: str | None = None):
    """Reject parents that belong to someone else or would close a cycle."""
    if parent_id is None:
        return
    if get_task_db(parent_id, owner_id) is None:
        raise HTTPException(status_code=400, detail="Parent task not found")
    if task_id and is_descendant_db(task_id, parent_id):
        raise HTTPException(status_code=400, detail="A task cannot be moved under itself or its subtasks")


def _check_tags(owner_id: str, tag_ids: list[str] | None):
    for tag_id in tag_ids or []:
        if get_tag_db(tag_id, owner_id) is None:
            raise HTTPException(status_code=400, detail=f"Tag {tag_id} not found")


@app.get("/tasks")
def get_tasks(owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> list[Task]:
    """Active tasks as a tree, in priority order."""
    return sort_tasks(get_task_tree(owner_id), DateContext.from_now())


@app.get("/tasks/completed")
def get_completed(owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> list[Task]:
    return get_completed_tasks(owner_id)


@app.get("/tasks/stats")
def get_stats(owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> dict[str, int]:
    """Number of active top-level tasks in each category."""
    return category_stats(get_task_tree(owner_id), DateContext.from_now())


@app.get("/tasks/export")
def export_tasks(owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> Response:
    content = export_tasks_to_csv(get_all_tasks(owner_id))
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="tasks.csv"'},
    )


@app.post("/tasks/import")
def import_tasks(request: ImportRequest, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> ImportResult:
    return import_batch(request.csv_content, owner_id)


@app.get("/tasks/{task_id}")
def get_task(task_id: str, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> Task:
    task = get_task_db(task_id, owner_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@app.post("/tasks", status_code=201)
def create_task(task_data: TaskCreate, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> Task:
    _check_parent(owner_id, task_data.parent_id)
    _check_tags(owner_id, task_data.tag_ids)
    return create_task_db(
        str(uuid.uuid4()),
        owner_id,
        task_data.name,
        importance=task_data.importance,
        complexity=task_data.complexity,
        link=task_data.link,
        note=task_data.note,
        planned_date=task_data.planned_date,
        due_date=task_data.due_date,
        parent_id=task_data.parent_id,
        position=task_data.position,
        tag_ids=task_data.tag_ids,
    )


@app.patch("/tasks/{task_id}")
def update_task(task_id: str, task_data: TaskUpdate, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> Task:
    if not get_task_db(task_id, owner_id):
        raise HTTPException(status_code=404, detail="Task not found")

    updates = task_data.model_dump(exclude_unset=True)
    if "parent_id" in updates:
        _check_parent(owner_id, updates["parent_id"], task_id)
    if "tag_ids" in updates:
        _check_tags(owner_id, updates["tag_ids"])

    return update_task_db(task_id, **updates)


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> dict:
    if not get_task_db(task_id, owner_id) or not delete_task_db(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


@app.get("/tags")
def get_tags(owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> list[Tag]:
    return get_all_tags(owner_id)


@app.post("/tags", status_code=201)
def create_tag(tag_data: TagCreate, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> Tag:
    try:
        return create_tag_db(str(uuid.uuid4()), tag_data.name, owner_id, tag_data.color)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Tag already exists")


@app.patch("/tags/{tag_id}")
def update_tag(tag_id: str, tag_data: TagUpdate, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> Tag:
    if not get_tag_db(tag_id, owner_id):
        raise HTTPException(status_code=404, detail="Tag not found")
    try:
        return update_tag_db(tag_id, **tag_data.model_dump(exclude_unset=True))
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Tag already exists")


@app.delete("/tags/{tag_id}")
def delete_tag(tag_id: str, owner_id: OwnerId = Config.DEFAULT_OWNER_ID) -> dict:
    if not get_tag_db(tag_id, owner_id) or not delete_tag_db(tag_id):
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"status": "deleted"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
