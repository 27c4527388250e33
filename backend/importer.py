"""
Rebuild a task tree from CSV rows that reference parents by name.

Rows may list a child before its parent, spell the parent name in another
case, point at a parent that does not exist, or point at themselves. Rows are
ordered by how many in-batch ancestors they have, then created one at a time
so that each row can see every task created before it.
"""
import sqlite3
import uuid
from typing import Optional

import database
from config import Config
from csv_codec import CsvFormatError, parse_csv
from logger import setup_logger
from models import DraftRecord, ImportResult

logger = setup_logger(__name__)


def _name_key(name: str) -> str:
    return name.strip().lower()


def compute_depth(draft: DraftRecord, drafts_by_name: dict[str, DraftRecord]) -> int:
    """
    Count the ancestors of draft that are present in the same batch.
    The walk stops at a name it has already visited, so cycles give a finite depth.
    """
    visited = {_name_key(draft.name)}
    depth = 0
    current = draft
    while current.parent_name:
        key = _name_key(current.parent_name)
        if key in visited or key not in drafts_by_name:
            break
        visited.add(key)
        depth += 1
        current = drafts_by_name[key]
    return depth


def order_by_depth(drafts: list[DraftRecord]) -> list[DraftRecord]:
    """Stable sort so that every in-batch ancestor comes before its descendants."""
    drafts_by_name: dict[str, DraftRecord] = {}
    for draft in drafts:
        drafts_by_name.setdefault(_name_key(draft.name), draft)

    depths = [compute_depth(draft, drafts_by_name) for draft in drafts]
    order = sorted(range(len(drafts)), key=lambda i: depths[i])
    return [drafts[i] for i in order]


def _resolve_tags(draft: DraftRecord, owner_id: str) -> list[str]:
    """Get or create every tag named by the draft, applying any color it carries."""
    tag_ids = []
    for name, color in zip(draft.tag_names, draft.tag_colors):
        tag = database.find_tag_by_name_db(name, owner_id)
        if tag is None:
            tag = database.create_tag_db(
                str(uuid.uuid4()), name, owner_id, color or Config.DEFAULT_TAG_COLOR
            )
        elif color and color != tag.color:
            tag = database.update_tag_db(tag.id, color=color)
        tag_ids.append(tag.id)
    return tag_ids


def _resolve_parent(draft: DraftRecord, created_ids: dict[str, str]) -> Optional[str]:
    """
    Look up the parent among tasks created earlier in this batch.
    Self references and unknown names both yield None; the row becomes a root task.
    """
    if not draft.parent_name:
        return None
    key = _name_key(draft.parent_name)
    if key == _name_key(draft.name):
        return None
    return created_ids.get(key)


def materialize_drafts(drafts: list[DraftRecord], owner_id: str) -> ImportResult:
    """
    Create tasks for depth-ordered drafts, strictly one after another.
    A failing row is reported and skipped; the remaining rows still run.
    """
    created_ids: dict[str, str] = {}
    result = ImportResult()

    for draft in drafts:
        try:
            tag_ids = _resolve_tags(draft, owner_id)
            task = database.create_task_db(
                str(uuid.uuid4()),
                owner_id,
                draft.name,
                importance=draft.importance,
                complexity=draft.complexity,
                link=draft.link,
                note=draft.note,
                planned_date=draft.planned_date,
                due_date=draft.due_date,
                parent_id=_resolve_parent(draft, created_ids),
                tag_ids=tag_ids,
            )
        except (sqlite3.Error, ValueError) as e:
            logger.warning(f"Line {draft.line_number}: failed to import '{draft.name}': {e}")
            result.errors.append(f'Failed to import "{draft.name}": {e}')
            continue

        created_ids[_name_key(draft.name)] = task.id
        result.imported_count += 1

    return result


def import_batch(raw_text: str, owner_id: str) -> ImportResult:
    """Parse, order and create every task in a CSV document for one owner."""
    logger.info(f"Starting CSV import for owner {owner_id}")

    try:
        drafts, parse_errors = parse_csv(raw_text)
    except CsvFormatError as e:
        logger.warning(f"CSV import rejected: {e}")
        return ImportResult(imported_count=0, errors=[str(e)])

    result = materialize_drafts(order_by_depth(drafts), owner_id)
    result.errors = parse_errors + result.errors

    logger.info(
        f"CSV import finished for owner {owner_id}: "
        f"{result.imported_count} imported, {len(result.errors)} errors"
    )
    return result
