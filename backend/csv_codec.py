"""
CSV import/export for tasks.

Column layout (positional):
ID, Name, Link, Note, Importance, Complexity, Points, PlannedDate, DueDate,
CreatedAt, UpdatedAt, ParentID, ParentName, Tags, TagColors

ID, CreatedAt, UpdatedAt and ParentID are written on export and ignored on
import; hierarchy is rebuilt from ParentName.
"""
import csv
import io
import re
from datetime import date
from typing import Iterable, Iterator, Optional, Union

from logger import setup_logger
from models import (
    MAX_COMPLEXITY,
    MAX_IMPORTANCE,
    MIN_COMPLEXITY,
    MIN_IMPORTANCE,
    DraftRecord,
    Task,
)

logger = setup_logger(__name__)

CSV_HEADERS = [
    "ID",
    "Name",
    "Link",
    "Note",
    "Importance",
    "Complexity",
    "Points",
    "PlannedDate",
    "DueDate",
    "CreatedAt",
    "UpdatedAt",
    "ParentID",
    "ParentName",
    "Tags",
    "TagColors",
]
# TagColors may be left off entirely
MIN_COLUMNS = len(CSV_HEADERS) - 1
DATE_FORMAT = "%Y-%m-%d"
LIST_SEPARATOR = ";"
# Notes can be long; the csv module default is 128 KiB per field
MAX_FIELD_SIZE = 10 * 1024 * 1024
ISO_DATE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


class CsvFormatError(ValueError):
    """The content as a whole cannot be read as a task CSV."""


class RowValidationError(ValueError):
    """One row was rejected; the rest of the batch is unaffected."""

    def __init__(self, line_number: int, message: str):
        self.line_number = line_number
        self.message = message
        super().__init__(f"Line {line_number}: {message}")


def _parse_int_in_range(value: str, field_name: str, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value.strip())
    except (ValueError, AttributeError):
        parsed = None
    if parsed is None or parsed < minimum or parsed > maximum:
        raise ValueError(f"{field_name} must be between {minimum} and {maximum}")
    return parsed


def _parse_optional_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return None


def _parse_date(value: str, label: str) -> Optional[date]:
    value = (value or "").strip()
    if not value:
        return None
    if not ISO_DATE.match(value):
        raise ValueError(f"Invalid {label} format")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid {label} format") from None


def _optional_text(value: str) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _split_tags(names_field: str, colors_field: str) -> tuple[list[str], list[Optional[str]]]:
    """
    Pair tag names with colors by position.
    Empty names are dropped together with their color slot; missing colors become None.
    """
    names = (names_field or "").split(LIST_SEPARATOR)
    colors = (colors_field or "").split(LIST_SEPARATOR)

    tag_names: list[str] = []
    tag_colors: list[Optional[str]] = []
    for index, raw_name in enumerate(names):
        name = raw_name.strip()
        if not name:
            continue
        color = colors[index].strip() if index < len(colors) else ""
        tag_names.append(name)
        tag_colors.append(color or None)
    return tag_names, tag_colors


def parse_row(columns: list[str], line_number: int) -> DraftRecord:
    """
    Turn one CSV record into a DraftRecord.
    Raises RowValidationError describing the first problem found.
    """
    if len(columns) < MIN_COLUMNS:
        raise RowValidationError(
            line_number,
            f"Insufficient columns ({len(columns)} instead of {len(CSV_HEADERS)})",
        )
    columns = columns + [""] * (len(CSV_HEADERS) - len(columns))

    (
        _id,
        name,
        link,
        note,
        importance_str,
        complexity_str,
        points_str,
        planned_date_str,
        due_date_str,
        _created_at,
        _updated_at,
        _parent_id,
        parent_name,
        tag_names_str,
        tag_colors_str,
    ) = columns[:len(CSV_HEADERS)]

    try:
        if not name or not name.strip():
            raise ValueError("Task name is required")
        name = name.strip()

        importance = _parse_int_in_range(importance_str, "importance", MIN_IMPORTANCE, MAX_IMPORTANCE)
        complexity = _parse_int_in_range(complexity_str, "complexity", MIN_COMPLEXITY, MAX_COMPLEXITY)
        planned_date = _parse_date(planned_date_str, "planned date")
        due_date = _parse_date(due_date_str, "due date")
    except ValueError as e:
        raise RowValidationError(line_number, str(e)) from None

    tag_names, tag_colors = _split_tags(tag_names_str, tag_colors_str)

    draft = DraftRecord(
        line_number=line_number,
        name=name,
        link=_optional_text(link),
        note=_optional_text(note),
        importance=importance,
        complexity=complexity,
        supplied_points=_parse_optional_int(points_str),
        planned_date=planned_date,
        due_date=due_date,
        parent_name=_optional_text(parent_name),
        tag_names=tag_names,
        tag_colors=tag_colors,
    )

    if draft.supplied_points is not None and draft.supplied_points != draft.points:
        logger.debug(
            f"Line {line_number}: points {draft.supplied_points} recomputed to {draft.points}"
        )
    return draft


def _read_records(content: str) -> Iterator[tuple[int, Union[list[str], csv.Error]]]:
    """
    Yield (line_number, columns) for each CSV record, or (line_number, error)
    for a record the reader rejects. After an error, reading resumes on the
    physical line following the start of the rejected record.
    """
    lines = io.StringIO(content, newline="").readlines()
    start = 0
    while start < len(lines):
        reader = csv.reader(lines[start:], strict=True)
        consumed = 0
        try:
            for columns in reader:
                yield start + consumed + 1, columns
                consumed = reader.line_num
            return
        except csv.Error as e:
            yield start + consumed + 1, e
            start += consumed + 1


def parse_csv(content: str) -> tuple[list[DraftRecord], list[str]]:
    """
    Parse a whole CSV document, header included.
    Returns the drafts that parsed and one error string per rejected row.
    Raises CsvFormatError when there is nothing to import at all.
    """
    if not content or not content.strip():
        raise CsvFormatError("CSV content cannot be empty")

    csv.field_size_limit(MAX_FIELD_SIZE)

    drafts: list[DraftRecord] = []
    errors: list[str] = []
    data_rows = 0
    header_seen = False

    for line_number, columns in _read_records(content):
        if isinstance(columns, csv.Error):
            logger.warning(f"Line {line_number}: unreadable CSV record: {columns}")
            errors.append(str(RowValidationError(line_number, f"Malformed CSV record ({columns})")))
            if header_seen:
                data_rows += 1
            header_seen = True
            continue

        if not columns or all(not c.strip() for c in columns):
            continue
        if not header_seen:
            header_seen = True
            continue

        data_rows += 1
        try:
            drafts.append(parse_row(columns, line_number))
        except RowValidationError as e:
            errors.append(str(e))

    if data_rows == 0:
        raise CsvFormatError("CSV must contain at least a header and one data row")

    return drafts, errors


def _format_date(value) -> str:
    if not value:
        return ""
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    # ISO datetime strings keep only their date part
    return str(value)[:10]


def task_to_row(task: Task, parent_name: Optional[str] = None) -> list:
    return [
        task.id,
        task.name,
        task.link or "",
        task.note or "",
        task.importance,
        task.complexity,
        task.points,
        _format_date(task.planned_date),
        _format_date(task.due_date),
        _format_date(task.created_at),
        _format_date(task.updated_at),
        task.parent_id or "",
        parent_name or task.parent_name or "",
        LIST_SEPARATOR.join(tag.name for tag in task.tags),
        LIST_SEPARATOR.join(tag.color or "" for tag in task.tags),
    ]


def export_tasks_to_csv(tasks: Iterable[Task]) -> str:
    """
    Serialize tasks, one row each, in the order given.
    Nested subtasks are not walked; pass a flat list.
    """
    tasks = list(tasks)
    names_by_id = {task.id: task.name for task in tasks}

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for task in tasks:
        writer.writerow(task_to_row(task, names_by_id.get(task.parent_id)))

    logger.info(f"Exported {len(tasks)} tasks to CSV")
    return buffer.getvalue()
