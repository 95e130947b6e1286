"""Shared task list: Markdown checkbox tasks and their claim state."""

from claimboard.tasks.markdown import TaskDocument, TaskListParser, parse_task_list
from claimboard.tasks.schema import Heading, Task, TaskStatus, derive_task_id
from claimboard.tasks.store import TaskQuery, TaskStore

__all__ = [
    "Heading",
    "Task",
    "TaskDocument",
    "TaskListParser",
    "TaskQuery",
    "TaskStatus",
    "TaskStore",
    "derive_task_id",
    "parse_task_list",
]
