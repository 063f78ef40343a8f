"""Tests for Celery tasks and periodic maintenance."""

import asyncio
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
import redis
from celery.exceptions import Retry
from sqlalchemy.exc import OperationalError

from ugc_engine.adapters.storage.local import LocalAssetStore
from ugc_engine.config import settings
from ugc_engine.db.models import VideoModel, utcnow
from ugc_engine.domain.enums import VideoStatus, VideoStyle
from ugc_engine.domain.models import RenderJob, RenderSuccess
from ugc_engine.exceptions import RenderDeferredError
from ugc_engine.jobs.maintenance import expire_downloads, reap_stale_renders
from ugc_engine.jobs.tasks import generate_video_task, run_render_job
from ugc_engine.services.credits import CreditLedger
from ugc_engine.services.orchestrator import RenderOrchestrator
from ugc_engine.services.video_store import VideoStore
from ugc_engine.services.videos import VideoService
from ugc_engine.utils import run_async


def _set(store: VideoStore, video_id: Any, **values: Any) -> None:
    with store.session() as session:
        video = session.get(VideoModel, video_id)
        for key, value in values.items():
            setattr(video, key, value)


class TestGenerateVideoTask:
    """Tests for the render task wrapper."""

    def test_task_runs_orchestrator_and_records_outcome(self) -> None:
        """The task hands the job to the orchestrator and stores the result marker."""
        video_id = uuid4()
        payload = {
            "video_id": str(video_id),
            "script": "Hi",
            "style": "LIFESTYLE",
            "duration": 15,
            "attempt": 0,
        }
        orchestrator = MagicMock()
        orchestrator.process = AsyncMock(
            return_value=RenderSuccess(video_id, 0, "ugc-videos/v", "https://cdn/v.mp4")
        )
        queue = MagicMock()

        with (
            patch("ugc_engine.jobs.tasks.build_orchestrator", return_value=orchestrator),
            patch("ugc_engine.jobs.tasks.get_generation_queue", return_value=queue),
        ):
            result = generate_video_task.apply(
                args=[payload], task_id=f"video-{video_id}-attempt-0"
            ).get()

        assert result["success"] is True
        assert result["download_url"] == "https://cdn/v.mp4"
        job = orchestrator.process.call_args.args[0]
        assert job.video_id == video_id
        queue.mark_finished.assert_called_once_with(f"video-{video_id}-attempt-0", result)

    def test_task_tolerates_marker_store_outage(self) -> None:
        """A Redis outage after the render does not fail the task."""
        video_id = uuid4()
        orchestrator = MagicMock()
        orchestrator.process = AsyncMock(
            return_value=RenderSuccess(video_id, 0, "ugc-videos/v", "https://cdn/v.mp4")
        )
        queue = MagicMock()
        queue.mark_finished.side_effect = redis.exceptions.ConnectionError("down")

        with (
            patch("ugc_engine.jobs.tasks.build_orchestrator", return_value=orchestrator),
            patch("ugc_engine.jobs.tasks.get_generation_queue", return_value=queue),
        ):
            result = generate_video_task.apply(
                args=[
                    {
                        "video_id": str(video_id),
                        "script": "Hi",
                        "style": "TALKING_HEAD",
                        "duration": 15,
                    }
                ]
            ).get()

        assert result["success"] is True

    def test_full_start_window_defers_delivery(self) -> None:
        """The eleventh start in a window is retried once the window slides."""
        video_id = uuid4()
        payload = {
            "video_id": str(video_id),
            "script": "Hi",
            "style": "LIFESTYLE",
            "duration": 15,
            "attempt": 0,
        }
        orchestrator = MagicMock()
        orchestrator.process = AsyncMock(side_effect=RenderDeferredError(video_id, 0, 42.0))

        with (
            patch("ugc_engine.jobs.tasks.build_orchestrator", return_value=orchestrator),
            patch("ugc_engine.jobs.tasks.get_generation_queue", return_value=MagicMock()),
            patch.object(generate_video_task, "retry", side_effect=Retry()) as retry,
        ):
            with pytest.raises(Retry):
                generate_video_task.run(payload)

        kwargs = retry.call_args.kwargs
        assert kwargs["countdown"] == 42.0
        assert kwargs["args"][0]["deferrals"] == 1
        assert kwargs["args"][0]["video_id"] == str(video_id)
        assert kwargs["max_retries"] == 1
        assert "exc" not in kwargs

    def test_infrastructure_fault_retries_with_backoff(self) -> None:
        """A database outage is retried; earlier deferrals do not use up the budget."""
        video_id = uuid4()
        payload = {
            "video_id": str(video_id),
            "script": "Hi",
            "style": "LIFESTYLE",
            "duration": 15,
            "deferrals": 3,
        }
        error = OperationalError("SELECT videos", {}, Exception("db down"))
        orchestrator = MagicMock()
        orchestrator.process = AsyncMock(side_effect=error)

        with (
            patch("ugc_engine.jobs.tasks.build_orchestrator", return_value=orchestrator),
            patch("ugc_engine.jobs.tasks.get_generation_queue", return_value=MagicMock()),
            patch.object(generate_video_task, "retry", side_effect=Retry()) as retry,
        ):
            with pytest.raises(Retry):
                generate_video_task.run(payload)

        kwargs = retry.call_args.kwargs
        assert kwargs["exc"] is error
        assert kwargs["max_retries"] == generate_video_task.max_retries + 3
        assert kwargs["countdown"] == settings.queue_retry_backoff_seconds

    def test_inline_runs_skip_start_window(self) -> None:
        """The broker-down fallback does not depend on Redis for admission."""
        video_id = uuid4()
        orchestrator = MagicMock()
        orchestrator.process = AsyncMock(
            return_value=RenderSuccess(video_id, 0, "ugc-videos/v", "https://cdn/v.mp4")
        )

        with patch(
            "ugc_engine.jobs.tasks.build_orchestrator", return_value=orchestrator
        ) as build:
            run_render_job(
                {"video_id": str(video_id), "script": "Hi", "style": "LIFESTYLE", "duration": 15}
            )

        build.assert_called_once_with(limit_starts=False)

    def test_task_configuration(self) -> None:
        """Infrastructure retries are bounded and late-acknowledged."""
        assert generate_video_task.name == "render.generate_video"
        assert generate_video_task.acks_late is True
        assert generate_video_task.max_retries == 2


class TestExpireDownloads:
    """Tests for download expiry."""

    @pytest.mark.asyncio
    async def test_lapsed_links_expire(
        self,
        video_service: VideoService,
        orchestrator: RenderOrchestrator,
        store: VideoStore,
        asset_store: LocalAssetStore,
        celery_mock: MagicMock,
        make_user: Any,
        product_data: dict[str, Any],
    ) -> None:
        """Only COMPLETED videos past their expiry move to EXPIRED and lose their asset."""
        user_id = make_user(credits=5)
        ids = []
        for _ in range(2):
            video = await video_service.generate_script(user_id, product_data, VideoStyle.LIFESTYLE)
            video_service.confirm_generation(user_id, video.id)
            job = RenderJob.from_payload(celery_mock.send_task.call_args.kwargs["args"][0])
            await orchestrator.process(job)
            ids.append(video.id)
        _set(store, ids[0], download_expires_at=utcnow() - timedelta(hours=1))
        lapsed_asset = asset_store.path_for(store.get(ids[0]).cloudinary_public_id)
        live_asset = asset_store.path_for(store.get(ids[1]).cloudinary_public_id)
        assert lapsed_asset.exists()

        expired = await expire_downloads(store, asset_store)

        assert expired == 1
        lapsed = store.get(ids[0])
        assert lapsed.status == VideoStatus.EXPIRED.value
        assert lapsed.cloudinary_public_id is None
        assert lapsed.download_url is None
        assert not lapsed_asset.exists()
        assert store.get(ids[1]).status == VideoStatus.COMPLETED.value
        assert live_asset.exists()

    @pytest.mark.asyncio
    async def test_lazily_expired_video_loses_asset(
        self,
        video_service: VideoService,
        orchestrator: RenderOrchestrator,
        store: VideoStore,
        asset_store: LocalAssetStore,
        celery_mock: MagicMock,
        make_user: Any,
        product_data: dict[str, Any],
    ) -> None:
        """A video expired by a download request has its asset removed by the next sweep."""
        user_id = make_user(credits=5)
        video = await video_service.generate_script(user_id, product_data, VideoStyle.LIFESTYLE)
        video_service.confirm_generation(user_id, video.id)
        await orchestrator.process(
            RenderJob.from_payload(celery_mock.send_task.call_args.kwargs["args"][0])
        )
        _set(store, video.id, download_expires_at=utcnow() - timedelta(hours=1))
        _set(store, video.id, status=VideoStatus.EXPIRED.value)
        asset = asset_store.path_for(store.get(video.id).cloudinary_public_id)

        expired = await expire_downloads(store, asset_store)

        assert expired == 0
        assert not asset.exists()
        assert store.get(video.id).cloudinary_public_id is None

    @pytest.mark.asyncio
    async def test_failed_delete_is_retried_next_sweep(
        self,
        video_service: VideoService,
        orchestrator: RenderOrchestrator,
        store: VideoStore,
        asset_store: LocalAssetStore,
        celery_mock: MagicMock,
        make_user: Any,
        product_data: dict[str, Any],
    ) -> None:
        """A storage outage leaves the asset reference in place."""
        user_id = make_user(credits=5)
        video = await video_service.generate_script(user_id, product_data, VideoStyle.LIFESTYLE)
        video_service.confirm_generation(user_id, video.id)
        await orchestrator.process(
            RenderJob.from_payload(celery_mock.send_task.call_args.kwargs["args"][0])
        )
        _set(store, video.id, download_expires_at=utcnow() - timedelta(hours=1))
        public_id = store.get(video.id).cloudinary_public_id

        with patch.object(asset_store, "delete", AsyncMock(side_effect=OSError("disk gone"))):
            assert await expire_downloads(store, asset_store) == 1
        assert store.get(video.id).cloudinary_public_id == public_id

        await expire_downloads(store, asset_store)

        assert store.get(video.id).cloudinary_public_id is None
        assert not asset_store.path_for(public_id).exists()


class TestReapStaleRenders:
    """Tests for abandoned render recovery."""

    @pytest.mark.asyncio
    async def test_stale_attempts_are_failed_and_refunded(
        self,
        video_service: VideoService,
        orchestrator: RenderOrchestrator,
        store: VideoStore,
        ledger: CreditLedger,
        make_user: Any,
        product_data: dict[str, Any],
    ) -> None:
        """Stuck GENERATING and never-started QUEUED attempts are refunded once."""
        user_id = make_user(credits=5)
        running = await video_service.generate_script(user_id, product_data, VideoStyle.LIFESTYLE)
        video_service.confirm_generation(user_id, running.id)
        store.transition(running.id, VideoStatus.QUEUED, VideoStatus.GENERATING)
        _set(store, running.id, generation_started_at=utcnow() - timedelta(hours=2))

        waiting = await video_service.generate_script(user_id, product_data, VideoStyle.LIFESTYLE)
        video_service.confirm_generation(user_id, waiting.id)
        _set(store, waiting.id, updated_at=utcnow() - timedelta(days=1))

        fresh = await video_service.generate_script(user_id, product_data, VideoStyle.LIFESTYLE)
        video_service.confirm_generation(user_id, fresh.id)
        assert ledger.get_balance(user_id) == 2

        counts = reap_stale_renders(orchestrator)
        again = reap_stale_renders(orchestrator)

        assert counts == {"running": 1, "queued": 1}
        assert again == {"running": 0, "queued": 0}
        assert store.get(running.id).error_code == "VIDEO_GENERATION_TIMEOUT"
        assert store.get(waiting.id).status == VideoStatus.FAILED.value
        assert store.get(fresh.id).status == VideoStatus.QUEUED.value
        assert ledger.get_balance(user_id) == 4


class TestRunAsync:
    """Tests for running coroutines from synchronous callers."""

    def test_returns_coroutine_result(self) -> None:
        """The coroutine runs to completion on the thread's loop."""

        async def answer() -> int:
            return 42

        assert run_async(answer()) == 42

    def test_loop_is_reused_per_thread(self) -> None:
        """Consecutive calls on one thread share a loop."""

        async def current() -> asyncio.AbstractEventLoop:
            return asyncio.get_running_loop()

        assert run_async(current()) is run_async(current())

    @pytest.mark.asyncio
    async def test_refuses_running_loop(self) -> None:
        """Calling from inside a loop is an error rather than a deadlock."""
        with pytest.raises(RuntimeError, match="running event loop"):
            run_async(asyncio.sleep(0))
