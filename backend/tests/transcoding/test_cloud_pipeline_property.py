"""Property-based tests for the cloud (MediaConvert) pipeline strategy."""

import asyncio
import tempfile

import pytest
from botocore.exceptions import ClientError
from hypothesis import given, settings, strategies as st

from app.modules.transcoding.abr import DEFAULT_QUALITY_LADDER
from app.modules.transcoding.cache import InMemoryCacheBackend, VideoCache
from app.modules.transcoding.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    TranscodeJobNotFoundError,
)
from app.modules.transcoding.models import VideoStatus
from app.modules.transcoding.repository import RenditionRepository, VideoRepository
from tests.transcoding.fakes import (
    FakeEncoder,
    FakeStorage,
    create_test_session_maker,
    create_video,
    make_cloud_backend,
    make_flaky_cache,
    make_mediaconvert_client,
    make_orchestrator,
    mediaconvert_job,
)

LADDER_NAMES = [rung.name for rung in DEFAULT_QUALITY_LADDER]


async def submitted_video(session, tmp_path, video_cache, client=None, storage=None):
    client = client or make_mediaconvert_client()
    orchestrator = make_orchestrator(
        session,
        str(tmp_path),
        video_cache,
        cloud_backend=make_cloud_backend(client, storage),
    )
    video = await create_video(session)
    await orchestrator.start(video.id, "/uploads/source.mp4")
    return orchestrator, video, client


class TestCloudSubmission:
    @pytest.mark.asyncio
    async def test_submit_records_job_and_stays_processing(self, session, video_cache, tmp_path) -> None:
        storage = FakeStorage()
        orchestrator, video, client = await submitted_video(session, tmp_path, video_cache, storage=storage)

        fresh = await VideoRepository(session).get_fresh(video.id)
        assert fresh.status == VideoStatus.PROCESSING.value
        assert fresh.processing_job_id == "job-123"
        assert storage.uploads == [("/uploads/source.mp4", f"sources/{video.id}/source.mp4")]

        kwargs = client.create_job.call_args.kwargs
        assert kwargs["Settings"]["Inputs"][0]["FileInput"] == f"s3://media/sources/{video.id}/source.mp4"
        assert len(kwargs["Settings"]["OutputGroups"][0]["Outputs"]) == len(LADDER_NAMES)

        status = await orchestrator.get_processing_status(video.id)
        assert status.progress == 30
        assert status.job_id == "job-123"
        assert status.message == "Transcoding job submitted"

    @pytest.mark.asyncio
    async def test_local_encoder_is_not_used(self, session, video_cache, tmp_path) -> None:
        encoder = FakeEncoder()
        orchestrator = make_orchestrator(
            session, str(tmp_path), video_cache, encoder, cloud_backend=make_cloud_backend()
        )
        video = await create_video(session)

        await orchestrator.start(video.id, "/uploads/source.mp4")

        assert encoder.encoded == []
        assert await RenditionRepository(session).list_for_video(video.id) == []

    @pytest.mark.asyncio
    async def test_missing_role_fails_without_job(self, session, video_cache, tmp_path) -> None:
        client = make_mediaconvert_client()
        storage = FakeStorage()
        orchestrator = make_orchestrator(
            session,
            str(tmp_path),
            video_cache,
            cloud_backend=make_cloud_backend(client, storage, role_arn=""),
        )
        video = await create_video(session)

        with pytest.raises(ConfigurationError):
            await orchestrator.start(video.id, "/uploads/source.mp4")

        fresh = await VideoRepository(session).get_fresh(video.id)
        assert fresh.status == VideoStatus.FAILED.value
        assert fresh.processing_job_id is None
        assert storage.uploads == []
        client.create_job.assert_not_called()

        status = await orchestrator.get_processing_status(video.id)
        assert status.status == VideoStatus.FAILED
        assert "role" in status.error

    @pytest.mark.asyncio
    async def test_staging_failure_marks_failed(self, session, video_cache, tmp_path) -> None:
        orchestrator = make_orchestrator(
            session,
            str(tmp_path),
            video_cache,
            cloud_backend=make_cloud_backend(storage=FakeStorage(fail=True)),
        )
        video = await create_video(session)

        with pytest.raises(ExternalServiceError):
            await orchestrator.start(video.id, "/uploads/source.mp4")

        fresh = await VideoRepository(session).get_fresh(video.id)
        assert fresh.status == VideoStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_rejected_submission_marks_failed(self, session, video_cache, tmp_path) -> None:
        client = make_mediaconvert_client()
        client.create_job.side_effect = ClientError(
            {"Error": {"Code": "BadRequestException", "Message": "invalid"}}, "CreateJob"
        )
        orchestrator = make_orchestrator(
            session, str(tmp_path), video_cache, cloud_backend=make_cloud_backend(client)
        )
        video = await create_video(session)

        with pytest.raises(ExternalServiceError):
            await orchestrator.start(video.id, "/uploads/source.mp4")

        status = await orchestrator.get_processing_status(video.id)
        assert status.status == VideoStatus.FAILED
        assert status.job_id is None


class TestCloudPolling:
    @pytest.mark.asyncio
    async def test_progressing_job_updates_cache_only(self, session, video_cache, tmp_path) -> None:
        orchestrator, video, client = await submitted_video(session, tmp_path, video_cache)
        client.get_job.return_value = mediaconvert_job(
            "job-123", "PROGRESSING", completed=["240p", "360p"], pending=2
        )

        status = await orchestrator.poll_job(video.id)

        assert status.status == VideoStatus.PROCESSING
        assert status.progress == 30 + 50 * 65 // 100
        assert "still processing" in status.message
        assert await RenditionRepository(session).list_for_video(video.id) == []

    @pytest.mark.asyncio
    async def test_complete_job_persists_one_rendition_per_output(self, session, video_cache, tmp_path) -> None:
        orchestrator, video, client = await submitted_video(session, tmp_path, video_cache)
        client.get_job.return_value = mediaconvert_job("job-123", "COMPLETE", completed=LADDER_NAMES)

        status = await orchestrator.poll_job(video.id)

        assert status.status == VideoStatus.READY
        assert status.progress == 100
        renditions = await RenditionRepository(session).list_for_video(video.id)
        assert sorted(r.quality for r in renditions) == sorted(LADDER_NAMES)
        by_quality = {r.quality: r for r in renditions}
        assert by_quality["720p"].playlist_url == "https://cdn.example.com/processed/vid/source_720p.m3u8"
        assert by_quality["720p"].bitrate == 2500

    @pytest.mark.asyncio
    async def test_error_job_marks_failed(self, session, video_cache, tmp_path) -> None:
        orchestrator, video, client = await submitted_video(session, tmp_path, video_cache)
        client.get_job.return_value = mediaconvert_job(
            "job-123", "ERROR", pending=5, error_message="Input file is corrupt"
        )

        status = await orchestrator.poll_job(video.id)

        assert status.status == VideoStatus.FAILED
        assert status.error == "Input file is corrupt"
        assert await RenditionRepository(session).list_for_video(video.id) == []

    @pytest.mark.asyncio
    async def test_status_call_failure_propagates_without_state_change(self, session, video_cache, tmp_path) -> None:
        orchestrator, video, client = await submitted_video(session, tmp_path, video_cache)
        client.get_job.side_effect = ClientError(
            {"Error": {"Code": "TooManyRequestsException", "Message": "slow down"}}, "GetJob"
        )

        with pytest.raises(ExternalServiceError):
            await orchestrator.poll_job(video.id)

        fresh = await VideoRepository(session).get_fresh(video.id)
        assert fresh.status == VideoStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_cache_outage_while_progressing_keeps_job_running(self, session, tmp_path) -> None:
        cache, redis = make_flaky_cache()
        orchestrator, video, client = await submitted_video(session, tmp_path, cache)
        client.get_job.return_value = mediaconvert_job(
            "job-123", "PROGRESSING", completed=["240p"], pending=4
        )
        redis.failing = {"setex"}

        with pytest.raises(ExternalServiceError):
            await orchestrator.poll_job(video.id)

        fresh = await VideoRepository(session).get_fresh(video.id)
        assert fresh.status == VideoStatus.PROCESSING.value
        assert fresh.last_error is None

        redis.failing = set()
        status = await orchestrator.poll_job(video.id)
        assert status.status == VideoStatus.PROCESSING
        assert status.job_id == "job-123"

    @pytest.mark.asyncio
    async def test_cache_outage_does_not_block_terminal_failure(self, session, tmp_path) -> None:
        cache, redis = make_flaky_cache()
        orchestrator, video, client = await submitted_video(session, tmp_path, cache)
        client.get_job.return_value = mediaconvert_job(
            "job-123", "ERROR", pending=5, error_message="Input file is corrupt"
        )
        redis.failing = {"setex", "delete"}

        status = await orchestrator.poll_job(video.id)

        assert status.status == VideoStatus.FAILED
        fresh = await VideoRepository(session).get_fresh(video.id)
        assert fresh.status == VideoStatus.FAILED.value
        assert fresh.last_error == "Input file is corrupt"

    @pytest.mark.asyncio
    async def test_processing_video_without_job(self, session, video_cache, tmp_path) -> None:
        orchestrator = make_orchestrator(
            session, str(tmp_path), video_cache, cloud_backend=make_cloud_backend()
        )
        video = await create_video(session, status=VideoStatus.PROCESSING)

        with pytest.raises(TranscodeJobNotFoundError):
            await orchestrator.poll_job(video.id)

    @pytest.mark.asyncio
    async def test_timeout_marks_failed_once(self, session, video_cache, tmp_path) -> None:
        orchestrator, video, _ = await submitted_video(session, tmp_path, video_cache)

        status = await orchestrator.mark_timed_out(video.id, 3600)
        again = await orchestrator.mark_timed_out(video.id, 7200)

        assert status.status == VideoStatus.FAILED
        assert "timed out after 3600s" in status.error
        assert again.error == status.error


async def poll_after_terminal(state: str, repeats: int):
    """Submit, poll ``repeats`` times after a terminal state, return snapshots."""
    maker = await create_test_session_maker()
    try:
        with tempfile.TemporaryDirectory() as output_dir:
            async with maker() as session:
                cache = VideoCache(InMemoryCacheBackend())
                client = make_mediaconvert_client()
                orchestrator = make_orchestrator(
                    session, output_dir, cache, cloud_backend=make_cloud_backend(client)
                )
                video = await create_video(session)
                await orchestrator.start(video.id, "/uploads/source.mp4")

                if state == "COMPLETE":
                    client.get_job.return_value = mediaconvert_job("job-123", state, completed=LADDER_NAMES)
                else:
                    client.get_job.return_value = mediaconvert_job("job-123", state, error_message="boom")

                snapshots = []
                for _ in range(repeats):
                    status = await orchestrator.poll_job(video.id)
                    fresh = await VideoRepository(session).get_fresh(video.id)
                    renditions = await RenditionRepository(session).list_for_video(video.id)
                    snapshots.append((
                        status.status,
                        fresh.status,
                        fresh.last_error,
                        sorted((r.quality, r.file_path) for r in renditions),
                    ))
                return snapshots, client.get_job.call_count
    finally:
        await maker.kw["bind"].dispose()


class TestPollIdempotence:
    @given(state=st.sampled_from(["COMPLETE", "ERROR"]), repeats=st.integers(min_value=2, max_value=5))
    @settings(max_examples=10, deadline=None)
    def test_repeated_polls_after_terminal_state_change_nothing(self, state: str, repeats: int) -> None:
        snapshots, status_calls = asyncio.run(poll_after_terminal(state, repeats))

        assert all(snapshot == snapshots[0] for snapshot in snapshots)
        # terminal state is observed once; later polls read the persisted row
        assert status_calls == 1
        if state == "COMPLETE":
            assert len(snapshots[0][3]) == len(LADDER_NAMES)
        else:
            assert snapshots[0][3] == []
