"""
Task prioritization: categories, ordering and subtask ranking.

Every function that depends on "today" takes a DateContext instead of reading
the clock, so one sort pass sees a single set of day boundaries.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from config import Config
from models import MAX_POINTS, Task


class TaskCategory(str, Enum):
    COLLECTED = "collected"
    OVERDUE = "overdue"
    TODAY = "today"
    TOMORROW = "tomorrow"
    NO_DATE = "no-date"
    FUTURE = "future"


# Lower rank sorts first
CATEGORY_RANK = {
    TaskCategory.COLLECTED: 1,
    TaskCategory.OVERDUE: 2,
    TaskCategory.TODAY: 3,
    TaskCategory.TOMORROW: 4,
    TaskCategory.NO_DATE: 5,
    TaskCategory.FUTURE: 6,
}


@dataclass(frozen=True)
class DateContext:
    today: date
    tomorrow: date
    day_after_tomorrow: date

    @classmethod
    def for_date(cls, today: date) -> "DateContext":
        return cls(
            today=today,
            tomorrow=today + timedelta(days=1),
            day_after_tomorrow=today + timedelta(days=2),
        )

    @classmethod
    def from_now(cls, now: Optional[datetime] = None, timezone: str = Config.TIMEZONE) -> "DateContext":
        """Build the context for the current day in the configured timezone."""
        if now is None:
            now = datetime.now(ZoneInfo(timezone))
        return cls.for_date(now.date())


def categorize_task(task: Task, context: DateContext) -> TaskCategory:
    return _classify(task, context)[0]


def _classify(task: Task, context: DateContext) -> tuple[TaskCategory, bool]:
    """
    Return the task's category and whether its due date put it there.
    Checks run from most to least urgent; the first match wins.
    """
    due = task.due_date
    planned = task.planned_date

    if (due and due < context.today) or (planned and planned < context.today):
        return TaskCategory.OVERDUE, bool(due and due < context.today)

    if due == context.today or planned == context.today:
        return TaskCategory.TODAY, due == context.today

    # A due date two days out is pulled forward even when the planned date is later
    due_soon = due in (context.tomorrow, context.day_after_tomorrow)
    if due_soon or planned == context.tomorrow:
        return TaskCategory.TOMORROW, due_soon

    if not task.has_dates and task.points == MAX_POINTS:
        return TaskCategory.COLLECTED, False

    if planned is None:
        return TaskCategory.NO_DATE, False

    return TaskCategory.FUTURE, False


def _earliest_overdue(task: Task, context: DateContext) -> date:
    return min(d for d in (task.due_date, task.planned_date) if d and d < context.today)


def priority_key(task: Task, context: DateContext) -> tuple:
    """Sort key giving the global priority order for top-level tasks."""
    category, due_driven = _classify(task, context)
    rank = CATEGORY_RANK[category]

    if category == TaskCategory.OVERDUE:
        return (rank, _earliest_overdue(task, context).toordinal(), -task.points)
    if category in (TaskCategory.TODAY, TaskCategory.TOMORROW):
        return (rank, -task.points, 0 if due_driven else 1)
    if category == TaskCategory.NO_DATE:
        return (rank, -task.points)
    if category == TaskCategory.FUTURE:
        return (rank, task.planned_date.toordinal())
    # Collected tasks keep their input order
    return (rank,)


def compare_tasks(a: Task, b: Task, context: DateContext) -> int:
    """Three-way comparison matching priority_key: negative when a sorts first."""
    key_a = priority_key(a, context)
    key_b = priority_key(b, context)
    return (key_a > key_b) - (key_a < key_b)


def subtask_key(task: Task) -> tuple:
    """Manually positioned children first (highest position first), then by points."""
    if task.position:
        return (0, -task.position)
    return (1, -task.points)


def sort_subtasks(subtasks: Iterable[Task]) -> list[Task]:
    return [
        task.model_copy(update={"subtasks": sort_subtasks(task.subtasks)})
        for task in sorted(subtasks, key=subtask_key)
    ]


def sort_tasks(tasks: Iterable[Task], context: Optional[DateContext] = None) -> list[Task]:
    """
    Order top-level tasks by priority and every level below them by subtask rank.
    Returns new Task objects; the input is left untouched.
    """
    if context is None:
        context = DateContext.from_now()

    return [
        task.model_copy(update={"subtasks": sort_subtasks(task.subtasks)})
        for task in sorted(tasks, key=lambda t: priority_key(t, context))
    ]


def category_stats(tasks: Iterable[Task], context: DateContext) -> dict[str, int]:
    """Count tasks per category, listing every category even when empty."""
    stats = {category.value: 0 for category in TaskCategory}
    for task in tasks:
        stats[categorize_task(task, context).value] += 1
    return stats
