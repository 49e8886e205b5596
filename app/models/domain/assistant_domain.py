# app/models/domain/assistant_domain.py
"""
Assistant Domain Models
States of one insight run and the run status values reported by the service.
"""

from enum import Enum


class RunState(str, Enum):
    """Client-side state of one insight request."""

    VALIDATING_ASSISTANT = "validating_assistant"
    THREAD_CREATED = "thread_created"
    MESSAGE_POSTED = "message_posted"
    RUN_STARTED = "run_started"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


# Run statuses reported by the assistant service
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"
TERMINAL_FAILURE_STATUSES = {"failed", "cancelled", "expired", "incomplete"}
TERMINAL_RUN_STATUSES = TERMINAL_FAILURE_STATUSES | {RUN_STATUS_COMPLETED}


def is_terminal_status(status: str | None) -> bool:
    return status in TERMINAL_RUN_STATUSES
