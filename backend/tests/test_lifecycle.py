# tests/test_lifecycle.py — Task status transition rules
import pytest

from errors import ValidationError
from lifecycle import check_transition, next_status, parse_task_status
from models import TaskStatus


class TestTransitions:
    @pytest.mark.parametrize("current,target", [
        (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
        (TaskStatus.IN_PROGRESS, TaskStatus.FILED),
        (TaskStatus.FILED, TaskStatus.APPROVED),
    ])
    def test_single_forward_step_allowed(self, current, target):
        assert check_transition(current, target) is True

    @pytest.mark.parametrize("status", list(TaskStatus))
    def test_same_status_is_noop(self, status):
        assert check_transition(status, status) is False

    @pytest.mark.parametrize("current,target", [
        (TaskStatus.PENDING, TaskStatus.FILED),
        (TaskStatus.PENDING, TaskStatus.APPROVED),
        (TaskStatus.IN_PROGRESS, TaskStatus.PENDING),
        (TaskStatus.APPROVED, TaskStatus.FILED),
    ])
    def test_skip_or_backward_rejected(self, current, target):
        with pytest.raises(ValidationError) as exc:
            check_transition(current, target)
        assert exc.value.status_code == 400

    def test_approved_is_terminal(self):
        assert next_status(TaskStatus.APPROVED) is None


class TestParse:
    def test_known_status(self):
        assert parse_task_status("FILED") is TaskStatus.FILED

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            parse_task_status("DONE")
