"""
Tests for the structlog context helpers.
"""

import pytest
import structlog

from swap_engine.core.logging import drop_unset_context, task_context


def test_task_context_binds_and_unbinds():
    structlog.contextvars.clear_contextvars()

    with task_context("expiry_sweeper") as run_id:
        bound = structlog.contextvars.get_contextvars()
        assert bound["task"] == "expiry_sweeper"
        assert bound["run_id"] == run_id

    assert "task" not in structlog.contextvars.get_contextvars()


def test_task_context_unbinds_after_error():
    structlog.contextvars.clear_contextvars()

    with pytest.raises(RuntimeError):
        with task_context("outbox_relay"):
            raise RuntimeError("tick failed")

    assert structlog.contextvars.get_contextvars() == {}


def test_unset_context_is_dropped():
    event = drop_unset_context(None, "info", {"event": "request_completed", "requester_id": None, "status_code": 200})
    assert event == {"event": "request_completed", "status_code": 200}
