from __future__ import annotations

import asyncio
import logging

import pytest

from src.media_pipeline.ai.ai_errors import AiErrorCode, AiTransformError
from src.media_pipeline.encoding.encoding_errors import EncodingError, EncodingFailureKind
from src.media_pipeline.errors import ErrorCode, StageError, StaleJobError
from src.media_pipeline.media.overlays import overlay_path
from src.media_pipeline.pipeline.pipeline_models import AspectRatio, OutputFormat, PipelineOptions
from src.media_pipeline.sessions.sessions_models import JobStatus, ProcessingState
from tests.helpers.pipeline import RecordingSessionRepository, build_orchestrator
from tests.helpers.seed import PNG_BYTES, seed_ai_config, seed_session
from tests.mocks.ffmpeg import FakeFfmpegRunner
from tests.mocks.providers import TRANSFORMED_PNG, FakeAiProvider

State = ProcessingState


@pytest.fixture
def sessions(session_factory) -> RecordingSessionRepository:
    return RecordingSessionRepository(session_factory)


@pytest.fixture
def provider() -> FakeAiProvider:
    return FakeAiProvider()


@pytest.fixture
def runner() -> FakeFfmpegRunner:
    return FakeFfmpegRunner()


@pytest.fixture
def orchestrator(sessions, ai_config_repo, media_store, provider, runner):
    return build_orchestrator(
        sessions=sessions,
        ai_configs=ai_config_repo,
        media_store=media_store,
        provider=provider,
        runner=runner,
    )


def claim(sessions, session_id: str = "S1", job_id: str = "job-1") -> str:
    sessions.claim_job(session_id, job_id)
    return job_id


def assert_result_invariant(session) -> None:
    assert (session.result_media is not None) == (session.processing.state is State.COMPLETED)


@pytest.mark.asyncio
async def test_image_with_ai_transform_completes(
    orchestrator, sessions, ai_config_repo, media_store, provider, runner
):
    seed_session(sessions, media_store)
    seed_ai_config(ai_config_repo, media_store)
    job_id = claim(sessions)
    options = PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)

    result = await orchestrator.run("S1", job_id, options)

    session = sessions.get_session("S1")
    assert session.processing.state is State.COMPLETED
    assert session.job_status is JobStatus.COMPLETED
    assert session.result_media == result
    assert result.path == "projects/proj-1/sessions/S1/results/job-1.jpg"
    assert result.url == "https://cdn.test/media/projects/proj-1/sessions/S1/results/job-1.jpg"
    assert media_store.exists(result.path)
    assert provider.call_count == 1
    assert provider.calls[0]["input"] == PNG_BYTES
    assert sessions.visited == [
        State.INITIALIZING,
        State.DOWNLOADING,
        State.AI_TRANSFORM,
        State.PROCESSING,
        State.UPLOADING,
        State.COMPLETED,
    ]
    # The encoder works on the provider output, cropped to the requested box.
    assert runner.last.description == "image encode"
    assert "crop=1080:1080" in runner.last.args[runner.last.args.index("-filter_complex") + 1]
    assert_result_invariant(session)


@pytest.mark.asyncio
async def test_image_without_ai_skips_ai_state(orchestrator, sessions, media_store, provider):
    seed_session(sessions, media_store)
    job_id = claim(sessions)

    await orchestrator.run("S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.STORY))

    assert State.AI_TRANSFORM not in sessions.visited
    assert provider.call_count == 0


@pytest.mark.asyncio
async def test_gif_ignores_ai_flag_with_single_warning(
    orchestrator, sessions, ai_config_repo, media_store, provider, caplog
):
    seed_session(sessions, media_store, session_id="S2", frames=12)
    seed_ai_config(ai_config_repo, media_store)
    job_id = claim(sessions, "S2")
    options = PipelineOptions(OutputFormat.GIF, AspectRatio.SQUARE, ai_transform=True)

    with caplog.at_level(logging.WARNING):
        result = await orchestrator.run("S2", job_id, options)

    session = sessions.get_session("S2")
    assert session.processing.state is State.COMPLETED
    assert result.mime_type == "image/gif"
    assert provider.call_count == 0
    assert State.AI_TRANSFORM not in sessions.visited
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert [record.getMessage() for record in warnings] == ["pipeline.ai_transform.ignored"]


@pytest.mark.asyncio
@pytest.mark.parametrize("output_format", [OutputFormat.GIF, OutputFormat.VIDEO])
async def test_ai_flag_has_no_effect_on_sequence_output(
    orchestrator, sessions, media_store, output_format
):
    seed_session(sessions, media_store, session_id="with-ai", frames=4)
    seed_session(sessions, media_store, session_id="without-ai", frames=4)
    claim(sessions, "with-ai", "job-a")
    claim(sessions, "without-ai", "job-b")

    with_ai = await orchestrator.run(
        "with-ai", "job-a", PipelineOptions(output_format, AspectRatio.STORY, ai_transform=True)
    )
    without_ai = await orchestrator.run(
        "without-ai", "job-b", PipelineOptions(output_format, AspectRatio.STORY)
    )

    assert media_store.read(with_ai.path) == media_store.read(without_ai.path)


@pytest.mark.asyncio
async def test_missing_reference_fails_before_provider_call(
    orchestrator, sessions, ai_config_repo, media_store, provider
):
    seed_session(sessions, media_store)
    seed_ai_config(ai_config_repo, media_store, store_references=False)
    job_id = claim(sessions)
    options = PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)

    with pytest.raises(StageError) as exc_info:
        await orchestrator.run("S1", job_id, options)

    assert exc_info.value.code is ErrorCode.REFERENCE_IMAGE_NOT_FOUND
    assert not exc_info.value.retryable
    assert provider.call_count == 0
    session = sessions.get_session("S1")
    assert session.processing.state is State.FAILED
    assert session.processing.error_code == "REFERENCE_IMAGE_NOT_FOUND"
    assert session.job_status is JobStatus.FAILED
    assert_result_invariant(session)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("ai_code", "session_code", "retryable"),
    [
        (AiErrorCode.API_ERROR, ErrorCode.AI_TRANSFORM_FAILED, True),
        (AiErrorCode.TIMEOUT, ErrorCode.AI_TRANSFORM_TIMEOUT, True),
        (AiErrorCode.INVALID_INPUT_IMAGE, ErrorCode.INVALID_INPUT_IMAGE, False),
        (AiErrorCode.INVALID_CONFIG, ErrorCode.INVALID_AI_CONFIG, False),
    ],
)
async def test_provider_errors_map_to_session_codes(
    orchestrator, sessions, ai_config_repo, media_store, provider, ai_code, session_code, retryable
):
    seed_session(sessions, media_store)
    seed_ai_config(ai_config_repo, media_store)
    provider.failures.append(AiTransformError("provider said no", ai_code))
    job_id = claim(sessions)

    with pytest.raises(StageError) as exc_info:
        await orchestrator.run(
            "S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)
        )

    assert exc_info.value.code is session_code
    assert exc_info.value.retryable is retryable
    assert isinstance(exc_info.value.__cause__, AiTransformError)
    session = sessions.get_session("S1")
    assert session.processing.error_code == session_code.value
    assert session.processing.error_message == "provider said no"
    assert provider.call_count == 1


@pytest.mark.asyncio
async def test_config_removed_after_submit_fails_with_transform_not_found(
    orchestrator, sessions, media_store, provider
):
    seed_session(sessions, media_store)
    job_id = claim(sessions)

    with pytest.raises(StageError) as exc_info:
        await orchestrator.run(
            "S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)
        )

    assert exc_info.value.code is ErrorCode.TRANSFORM_NOT_FOUND
    assert provider.call_count == 0


@pytest.mark.asyncio
async def test_missing_input_asset_is_download_failed(orchestrator, sessions, media_store, media_paths):
    seed_session(sessions, media_store)
    (media_paths.root / "projects/proj-1/sessions/S1/inputs/000.png").unlink()
    job_id = claim(sessions)

    with pytest.raises(StageError) as exc_info:
        await orchestrator.run("S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))

    assert exc_info.value.code is ErrorCode.DOWNLOAD_FAILED
    assert exc_info.value.retryable
    assert sessions.get_session("S1").processing.error_code == "DOWNLOAD_FAILED"


@pytest.mark.asyncio
async def test_session_without_assets_fails(orchestrator, sessions, media_store):
    seed_session(sessions, media_store, frames=0)
    job_id = claim(sessions)

    with pytest.raises(StageError) as exc_info:
        await orchestrator.run("S1", job_id, PipelineOptions(OutputFormat.GIF, AspectRatio.SQUARE))

    assert exc_info.value.code is ErrorCode.NO_INPUT_ASSETS
    assert not exc_info.value.retryable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("kind", "retryable"),
    [(EncodingFailureKind.CODEC, False), (EncodingFailureKind.TIMEOUT, True)],
)
async def test_encoding_errors_are_recorded(orchestrator, sessions, media_store, runner, kind, retryable):
    seed_session(sessions, media_store)
    runner.failures.append(EncodingError("ffmpeg exploded", kind))
    job_id = claim(sessions)

    with pytest.raises(StageError) as exc_info:
        await orchestrator.run("S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))

    assert exc_info.value.code is ErrorCode.ENCODING_FAILED
    assert exc_info.value.retryable is retryable
    session = sessions.get_session("S1")
    assert session.processing.state is State.FAILED
    assert sessions.visited[-2:] == [State.PROCESSING, State.FAILED]


@pytest.mark.asyncio
async def test_overlay_is_composited_when_configured(orchestrator, sessions, media_store, runner):
    seed_session(sessions, media_store)
    media_store.write(overlay_path("proj-1", "square"), PNG_BYTES, "image/png")
    job_id = claim(sessions)

    await orchestrator.run(
        "S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, overlay=True)
    )

    assert runner.last.args.count("-i") == 2
    assert "overlay=0:0" in runner.last.args[runner.last.args.index("-filter_complex") + 1]


@pytest.mark.asyncio
async def test_missing_overlay_is_skipped(orchestrator, sessions, media_store, runner):
    seed_session(sessions, media_store)
    job_id = claim(sessions)

    await orchestrator.run(
        "S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.STORY, overlay=True)
    )

    assert sessions.get_session("S1").processing.state is State.COMPLETED
    assert runner.last.args.count("-i") == 1


@pytest.mark.asyncio
async def test_video_uses_captured_clip(orchestrator, sessions, media_store, runner):
    clip = media_store.write("projects/proj-1/sessions/V1/inputs/clip.mp4", b"\x00\x00\x00\x18ftypmp42", "video/mp4")
    sessions.create_session(
        session_id="V1", project_id="proj-1", experience_id="exp-1", input_assets=[clip]
    )
    job_id = claim(sessions, "V1")

    result = await orchestrator.run("V1", job_id, PipelineOptions(OutputFormat.VIDEO, AspectRatio.SQUARE))

    assert result.path.endswith("/results/job-1.mp4")
    assert runner.last.description == "video transcode"


@pytest.mark.asyncio
async def test_lost_ownership_leaves_session_untouched(orchestrator, sessions, media_store):
    seed_session(sessions, media_store)
    claim(sessions, "S1", "job-current")

    with pytest.raises(StaleJobError):
        await orchestrator.run("S1", "job-old", PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))

    session = sessions.get_session("S1")
    assert session.job_id == "job-current"
    assert session.processing.state is State.PENDING
    assert session.job_status is JobStatus.RUNNING


@pytest.mark.asyncio
async def test_ai_output_feeds_encoder(orchestrator, sessions, ai_config_repo, media_store, runner):
    seed_session(sessions, media_store)
    seed_ai_config(ai_config_repo, media_store)
    job_id = claim(sessions)
    captured = {}
    original_run = runner.run

    def spy(args, *, timeout, description):
        source = args[args.index("-i") + 1]
        with open(source, "rb") as handle:
            captured["input"] = handle.read()
        original_run(args, timeout=timeout, description=description)

    runner.run = spy

    await orchestrator.run(
        "S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)
    )

    assert captured["input"] == TRANSFORMED_PNG


@pytest.mark.asyncio
async def test_cancelled_run_marks_session_failed(
    orchestrator, sessions, ai_config_repo, media_store, provider
):
    seed_session(sessions, media_store)
    seed_ai_config(ai_config_repo, media_store)
    provider.delay_seconds = 2.0
    job_id = claim(sessions)
    task = asyncio.create_task(
        orchestrator.run(
            "S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE, ai_transform=True)
        )
    )
    while provider.call_count == 0:
        await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    session = sessions.get_session("S1")
    assert session.processing.state is State.FAILED
    assert session.processing.error_code == "INTERNAL_ERROR"
    assert "ai-transform" in session.processing.error_message
    assert session.job_status is JobStatus.FAILED
    assert_result_invariant(session)
    # The session is free for a new job.
    sessions.claim_job("S1", "job-2")


@pytest.mark.asyncio
async def test_upload_after_lost_ownership_logs_orphaned_blob(
    orchestrator, sessions, media_store, monkeypatch, caplog
):
    seed_session(sessions, media_store)
    job_id = claim(sessions)

    def superseded(*_args, **_kwargs):
        raise StaleJobError(f"Job '{job_id}' no longer owns session 'S1'")

    monkeypatch.setattr(sessions, "complete", superseded)
    with caplog.at_level(logging.WARNING), pytest.raises(StaleJobError):
        await orchestrator.run("S1", job_id, PipelineOptions(OutputFormat.IMAGE, AspectRatio.SQUARE))

    orphaned = [r for r in caplog.records if r.getMessage() == "pipeline.upload.orphaned"]
    assert len(orphaned) == 1
    assert orphaned[0].path == "projects/proj-1/sessions/S1/results/job-1.jpg"
    assert media_store.exists(orphaned[0].path)
