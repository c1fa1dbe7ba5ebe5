"""
Tests for task status semantics and the happy-path transition.
"""

import logging

import pytest

from task_lifecycle import INITIAL_STATUS, TERMINAL_STATUSES, TaskStatus, next_status

logger = logging.getLogger(__name__)


@pytest.mark.parametrize("current, expected", [
    (TaskStatus.WAITING, TaskStatus.IN_PROGRESS),
    (TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW),
    (TaskStatus.IN_REVIEW, TaskStatus.COMPLETED),
])
def test_happy_path_advances(current, expected):
    assert next_status(current) is expected


@pytest.mark.parametrize("status", [
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.REJECTED,
    TaskStatus.ON_HOLD,
])
def test_fixed_points(status):
    """Terminal statuses and ON_HOLD do not move."""
    assert next_status(status) is status


def test_walking_from_initial_status_reaches_completed():
    status = INITIAL_STATUS
    seen = [status]
    while next_status(status) is not status:
        status = next_status(status)
        seen.append(status)
    assert status is TaskStatus.COMPLETED
    assert seen == [TaskStatus.WAITING, TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW, TaskStatus.COMPLETED]
    logger.info(f"✓ Happy path: {' -> '.join(s.value for s in seen)}")


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.REJECTED}
    assert TaskStatus.REJECTED.is_terminal
    assert not TaskStatus.ON_HOLD.is_terminal


def test_next_status_accepts_plain_strings():
    assert next_status("WAITING") is TaskStatus.IN_PROGRESS
    with pytest.raises(ValueError):
        next_status("DONE")


def test_display_names():
    assert TaskStatus.IN_PROGRESS.display_name == "In progress"
    assert all(status.display_name for status in TaskStatus)
