"""
Task lifecycle: the status enumeration and the "happy path" transition.

The explicit status mutation exposed by the API accepts any status value;
``next_status`` is a convenience for moving a task one step forward along
WAITING -> IN_PROGRESS -> IN_REVIEW -> COMPLETED.
"""

import enum


class TaskStatus(str, enum.Enum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"
    IN_REVIEW = "IN_REVIEW"
    REJECTED = "REJECTED"

    @property
    def display_name(self) -> str:
        return STATUS_DISPLAY_NAMES[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


STATUS_DISPLAY_NAMES = {
    TaskStatus.WAITING: "Waiting",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.CANCELLED: "Cancelled",
    TaskStatus.ON_HOLD: "On hold",
    TaskStatus.IN_REVIEW: "In review",
    TaskStatus.REJECTED: "Rejected",
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.REJECTED})

INITIAL_STATUS = TaskStatus.WAITING

# Statuses missing from this table are fixed points of next_status
_HAPPY_PATH = {
    TaskStatus.WAITING: TaskStatus.IN_PROGRESS,
    TaskStatus.IN_PROGRESS: TaskStatus.IN_REVIEW,
    TaskStatus.IN_REVIEW: TaskStatus.COMPLETED,
}


def next_status(current: TaskStatus) -> TaskStatus:
    """
    Return the status that follows ``current`` on the happy path.

    COMPLETED, CANCELLED, ON_HOLD and REJECTED map to themselves.

    Example:
        >>> next_status(TaskStatus.WAITING)
        <TaskStatus.IN_PROGRESS: 'IN_PROGRESS'>
        >>> next_status(TaskStatus.ON_HOLD)
        <TaskStatus.ON_HOLD: 'ON_HOLD'>
    """
    return _HAPPY_PATH.get(TaskStatus(current), TaskStatus(current))
