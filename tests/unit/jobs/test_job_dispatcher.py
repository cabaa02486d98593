from __future__ import annotations

import pytest

from src.media_pipeline.errors import (
    ErrorCode,
    JobInProgressError,
    SessionCompletedError,
    SessionNotFoundError,
    StaleJobError,
    TransformNotFoundError,
)
from src.media_pipeline.jobs.job_queue import JobQueue
from src.media_pipeline.jobs.jobs_service import JobDispatcher
from src.media_pipeline.pipeline.pipeline_models import AspectRatio, OutputFormat, PipelineOptions
from src.media_pipeline.sessions.sessions_models import JobStatus, ProcessingState
from tests.helpers.seed import backdate_session, seed_ai_config, seed_session

IMAGE_AI = PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)
GIF_AI = PipelineOptions(OutputFormat.GIF, AspectRatio.STORY, ai_transform=True)


@pytest.fixture
def queue() -> JobQueue:
    return JobQueue()


@pytest.fixture
def dispatcher(session_repo, ai_config_repo, job_history_repo, queue) -> JobDispatcher:
    return JobDispatcher(
        sessions=session_repo,
        ai_configs=ai_config_repo,
        job_history=job_history_repo,
        queue=queue,
    )


@pytest.mark.asyncio
async def test_submit_claims_session_and_enqueues(
    dispatcher, queue, session_repo, ai_config_repo, job_history_repo, media_store
):
    seed_session(session_repo, media_store)
    seed_ai_config(ai_config_repo, media_store)

    handle = await dispatcher.submit("S1", IMAGE_AI)

    session = session_repo.get_session("S1")
    assert session.job_id == handle.job_id
    assert session.job_status is JobStatus.RUNNING
    assert queue.qsize() == 1
    payload = await queue.get()
    assert payload.job_id == handle.job_id
    assert payload.options == IMAGE_AI
    assert job_history_repo.get_job(handle.job_id).status == "pending"


@pytest.mark.asyncio
async def test_missing_session_is_not_found_and_creates_nothing(dispatcher, queue, session_repo):
    options = PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE)

    with pytest.raises(SessionNotFoundError) as exc_info:
        await dispatcher.submit("missing", options)

    assert exc_info.value.code is ErrorCode.SESSION_NOT_FOUND
    assert queue.qsize() == 0
    with pytest.raises(SessionNotFoundError):
        session_repo.get_session("missing")


@pytest.mark.asyncio
async def test_image_ai_without_config_is_transform_not_found(
    dispatcher, queue, session_repo, media_store
):
    seed_session(session_repo, media_store)
    before = session_repo.get_session("S1")

    with pytest.raises(TransformNotFoundError):
        await dispatcher.submit("S1", IMAGE_AI)

    after = session_repo.get_session("S1")
    assert after.job_id is None
    assert after.updated_at == before.updated_at
    assert queue.qsize() == 0


@pytest.mark.asyncio
async def test_gif_ai_flag_does_not_require_config(dispatcher, queue, session_repo, media_store):
    seed_session(session_repo, media_store, frames=3)

    await dispatcher.submit("S1", GIF_AI)

    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_running_job_conflicts_without_mutation(dispatcher, queue, session_repo, media_store):
    seed_session(session_repo, media_store, session_id="S4")
    options = PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE)
    first = await dispatcher.submit("S4", options)
    before = session_repo.get_session("S4")

    with pytest.raises(JobInProgressError) as exc_info:
        await dispatcher.submit("S4", options)

    assert exc_info.value.code is ErrorCode.JOB_IN_PROGRESS
    after = session_repo.get_session("S4")
    assert after.job_id == first.job_id
    assert after.updated_at == before.updated_at
    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_completed_session_is_rejected(dispatcher, session_repo, media_store):
    seed_session(session_repo, media_store)
    session_repo.claim_job("S1", "job-0")
    for state in (
        ProcessingState.INITIALIZING,
        ProcessingState.DOWNLOADING,
        ProcessingState.PROCESSING,
        ProcessingState.UPLOADING,
    ):
        session_repo.advance("S1", "job-0", state)
    session = session_repo.get_session("S1")
    session_repo.complete("S1", "job-0", session.input_assets[0])

    with pytest.raises(SessionCompletedError):
        await dispatcher.submit("S1", PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))


@pytest.mark.asyncio
async def test_enqueue_failure_releases_the_session(
    dispatcher, queue, session_repo, job_history_repo, media_store, monkeypatch
):
    seed_session(session_repo, media_store)
    options = PipelineOptions(OutputFormat.GIF, AspectRatio.SQUARE)

    def broken_create_pending(**_kwargs):
        raise RuntimeError("job_history is read-only")

    monkeypatch.setattr(job_history_repo, "create_pending", broken_create_pending)
    with pytest.raises(RuntimeError):
        await dispatcher.submit("S1", options)

    session = session_repo.get_session("S1")
    assert session.job_status is JobStatus.FAILED
    assert session.processing.state is ProcessingState.FAILED
    assert session.processing.error_code == "INTERNAL_ERROR"
    assert queue.qsize() == 0

    monkeypatch.undo()
    handle = await dispatcher.submit("S1", options)

    assert session_repo.get_session("S1").job_id == handle.job_id
    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_abandoned_running_job_is_taken_over(
    session_repo, ai_config_repo, job_history_repo, queue, media_store, session_factory
):
    dispatcher = JobDispatcher(
        sessions=session_repo,
        ai_configs=ai_config_repo,
        job_history=job_history_repo,
        queue=queue,
        stale_after_seconds=60,
    )
    seed_session(session_repo, media_store)
    session_repo.claim_job("S1", "job-crashed")
    session_repo.advance("S1", "job-crashed", ProcessingState.INITIALIZING)
    backdate_session(session_factory, "S1", 600)

    handle = await dispatcher.submit("S1", PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))

    session = session_repo.get_session("S1")
    assert session.job_id == handle.job_id
    assert session.job_status is JobStatus.RUNNING
    assert session.processing.state is ProcessingState.PENDING
    assert queue.qsize() == 1
    # The crashed job can no longer write to the session.
    with pytest.raises(StaleJobError):
        session_repo.advance("S1", "job-crashed", ProcessingState.DOWNLOADING)


@pytest.mark.asyncio
async def test_recent_running_job_is_not_taken_over(
    session_repo, ai_config_repo, job_history_repo, queue, media_store
):
    dispatcher = JobDispatcher(
        sessions=session_repo,
        ai_configs=ai_config_repo,
        job_history=job_history_repo,
        queue=queue,
        stale_after_seconds=60,
    )
    seed_session(session_repo, media_store)
    session_repo.claim_job("S1", "job-live")

    with pytest.raises(JobInProgressError):
        await dispatcher.submit("S1", PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))

    assert session_repo.get_session("S1").job_id == "job-live"
