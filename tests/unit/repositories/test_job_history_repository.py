from __future__ import annotations

import pytest

from src.media_pipeline.db.db_models import JobHistoryModel


def test_job_lifecycle_is_recorded(job_history_repo, session_factory):
    job_history_repo.create_pending(
        job_id="job-1", session_id="S1", output_format="gif", aspect_ratio="story"
    )
    job_history_repo.mark_attempt("job-1", 1)
    job_history_repo.set_failure("job-1", failure_code="UPLOAD_FAILED", failure_message="io")
    job_history_repo.mark_attempt("job-1", 2)
    job_history_repo.set_result("job-1", result_path="projects/p/sessions/S1/results/job-1.gif")

    record = job_history_repo.get_job("job-1")
    assert record.status == "completed"
    assert record.attempts == 2
    assert record.failure_code is None
    assert record.result_path.endswith("job-1.gif")

    with session_factory() as session:
        row = session.get(JobHistoryModel, "job-1")
        assert row.started_at is not None
        assert row.completed_at is not None


def test_unknown_job_raises_key_error(job_history_repo):
    with pytest.raises(KeyError):
        job_history_repo.get_job("nope")
