"""Domain errors raised by services and translated to HTTP responses in main.py."""

from __future__ import annotations


class MissionControlError(Exception):
    """Base class for errors that map onto a client-facing status code."""

    status_code = 500


class InvalidRequestError(MissionControlError):
    """A required request field is missing or unusable."""

    status_code = 400


class TaskNotFoundError(MissionControlError):
    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__("Task not found")
        self.task_id = task_id


class AgentCallError(RuntimeError):
    """The agent CLI could not be run or returned unusable output."""
