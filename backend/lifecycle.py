# lifecycle.py — Compliance task status lifecycle
# PENDING -> IN_PROGRESS -> FILED -> APPROVED, one step at a time.
from typing import Optional

from errors import ValidationError
from models import TaskStatus

TASK_STATUS_ORDER = (
    TaskStatus.PENDING,
    TaskStatus.IN_PROGRESS,
    TaskStatus.FILED,
    TaskStatus.APPROVED,
)


def parse_task_status(value: str) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def next_status(current: TaskStatus) -> Optional[TaskStatus]:
    idx = TASK_STATUS_ORDER.index(current)
    if idx + 1 < len(TASK_STATUS_ORDER):
        return TASK_STATUS_ORDER[idx + 1]
    return None


def check_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Validate a status change.

    Returns False when the target equals the current status (nothing to do),
    True for the single permitted forward step, and raises ValidationError
    for anything else.
    """
    if target == current:
        return False
    if target != next_status(current):
        raise ValidationError(
            f"Invalid status transition: {current.value} -> {target.value}"
        )
    return True
