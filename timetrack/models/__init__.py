from timetrack.models.task import Task
from timetrack.models.time_entry import TimeEntry

__all__ = [
    "Task",
    "TimeEntry",
]
