from __future__ import annotations

import json
import logging

import pytest
import structlog

from src.media_pipeline.logging import configure_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_records_render_as_json_with_extra_and_bound_context(restore_logging, capsys) -> None:
    configure_logging()
    log = logging.getLogger("src.media_pipeline.jobs.job_worker")

    with structlog.contextvars.bound_contextvars(job_id="job-9", attempt=2):
        log.warning("jobs.attempt.failed", extra={"error_code": "ENCODING_FAILED"})

    line = capsys.readouterr().err.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "jobs.attempt.failed"
    assert event["level"] == "warning"
    assert event["job_id"] == "job-9"
    assert event["attempt"] == 2
    assert event["error_code"] == "ENCODING_FAILED"
    assert "timestamp" in event
