"""Video record persistence.

Status changes are written as conditional updates: the row only moves if it
is still in one of the states the caller observed. Callers treat a ``False``
return as "someone else got there first" and re-read.
"""

from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ugc_engine.db.models import VideoModel, utcnow
from ugc_engine.db.session import SessionLocal, session_scope
from ugc_engine.domain.enums import VideoStatus, VideoStyle
from ugc_engine.domain.state_machine import check_transition
from ugc_engine.exceptions import AccessDeniedError, VideoNotFoundError
from ugc_engine.logging import get_logger

logger = get_logger(__name__)


class VideoStore:
    """Load, create and transition video records."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def session(self, session: Session | None = None) -> AbstractContextManager[Session]:
        """Join ``session`` or open a committed unit of work."""
        return session_scope(session, self._session_factory)

    def create(
        self,
        user_id: UUID,
        product_data: dict[str, Any],
        style: VideoStyle,
        session: Session | None = None,
    ) -> VideoModel:
        """Insert a PENDING_SCRIPT record from a product snapshot."""
        with self.session(session) as s:
            video = VideoModel(
                user_id=user_id,
                status=VideoStatus.PENDING_SCRIPT.value,
                product_data=product_data,
                product_title=product_data["title"],
                product_url=product_data["url"],
                product_images=list(product_data.get("images") or []),
                video_style=style.value,
                credits_used=0,
                retry_count=0,
            )
            s.add(video)
            s.flush()
            logger.info("video_created", video_id=str(video.id), user_id=str(user_id))
            return video

    def get(self, video_id: UUID, session: Session | None = None) -> VideoModel | None:
        with self.session(session) as s:
            return s.get(VideoModel, video_id, populate_existing=True)

    def get_for_user(
        self, user_id: UUID, video_id: UUID, session: Session | None = None
    ) -> VideoModel:
        """Load a video and assert the caller owns it."""
        video = self.get(video_id, session=session)
        if video is None:
            raise VideoNotFoundError(video_id)
        if video.user_id != user_id:
            raise AccessDeniedError(video_id)
        return video

    def list_for_user(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 20,
        status: VideoStatus | None = None,
        session: Session | None = None,
    ) -> tuple[list[VideoModel], int]:
        """One page of a user's videos, newest first, plus the total."""
        page = max(page, 1)
        filters = [VideoModel.user_id == user_id]
        if status is not None:
            filters.append(VideoModel.status == status.value)

        with self.session(session) as s:
            total = s.execute(
                select(func.count()).select_from(VideoModel).where(*filters)
            ).scalar_one()
            rows = (
                s.execute(
                    select(VideoModel)
                    .where(*filters)
                    .order_by(VideoModel.created_at.desc(), VideoModel.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return list(rows), total

    def transition(
        self,
        video_id: UUID,
        from_statuses: VideoStatus | Iterable[VideoStatus],
        to_status: VideoStatus,
        session: Session | None = None,
        attempt: int | None = None,
        **changes: Any,
    ) -> bool:
        """Move ``video_id`` to ``to_status`` iff it is in one of ``from_statuses``.

        ``attempt`` additionally pins the update to rows whose ``retry_count``
        still equals it.
        ``changes`` are extra column values written in the same statement;
        they may be SQL expressions such as ``VideoModel.retry_count + 1``.

        Returns:
            True if the row moved, False if its status had already changed.

        Raises:
            InvalidTransitionError: If a from/to pair is not in the table.
        """
        if isinstance(from_statuses, VideoStatus):
            from_statuses = [from_statuses]
        sources = list(from_statuses)
        for source in sources:
            check_transition(source, to_status)

        conditions = [
            VideoModel.id == video_id,
            VideoModel.status.in_([source.value for source in sources]),
        ]
        if attempt is not None:
            conditions.append(VideoModel.retry_count == attempt)

        with self.session(session) as s:
            result = s.execute(
                update(VideoModel)
                .where(*conditions)
                .values(status=to_status.value, updated_at=utcnow(), **changes)
                .execution_options(synchronize_session=False)
            )
            moved = result.rowcount == 1

        if moved:
            logger.info(
                "video_status_changed",
                video_id=str(video_id),
                from_statuses=[str(source) for source in sources],
                to_status=str(to_status),
            )
        else:
            logger.info(
                "video_transition_lost",
                video_id=str(video_id),
                expected=[str(source) for source in sources],
                to_status=str(to_status),
            )
        return moved

    def update_fields(
        self,
        video_id: UUID,
        status: VideoStatus,
        session: Session | None = None,
        **changes: Any,
    ) -> bool:
        """Write columns only while the video is still in ``status``."""
        with self.session(session) as s:
            result = s.execute(
                update(VideoModel)
                .where(VideoModel.id == video_id, VideoModel.status == status.value)
                .values(updated_at=utcnow(), **changes)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def find_expired_downloads(
        self, now: datetime | None = None, session: Session | None = None
    ) -> list[UUID]:
        """Ids of COMPLETED videos whose signed download URL has lapsed."""
        now = now or utcnow()
        with self.session(session) as s:
            return list(
                s.execute(
                    select(VideoModel.id).where(
                        VideoModel.status == VideoStatus.COMPLETED.value,
                        VideoModel.download_expires_at.is_not(None),
                        VideoModel.download_expires_at < now,
                    )
                )
                .scalars()
                .all()
            )

    def find_stale_renders(
        self, started_before: datetime, session: Session | None = None
    ) -> list[VideoModel]:
        """GENERATING/PROCESSING videos whose render began before the cutoff."""
        with self.session(session) as s:
            return list(
                s.execute(
                    select(VideoModel).where(
                        VideoModel.status.in_(
                            [VideoStatus.GENERATING.value, VideoStatus.PROCESSING.value]
                        ),
                        VideoModel.generation_started_at.is_not(None),
                        VideoModel.generation_started_at < started_before,
                    )
                )
                .scalars()
                .all()
            )

    def find_stale_queued(
        self, queued_before: datetime, session: Session | None = None
    ) -> list[VideoModel]:
        """QUEUED videos that no worker has picked up since the cutoff."""
        with self.session(session) as s:
            return list(
                s.execute(
                    select(VideoModel).where(
                        VideoModel.status == VideoStatus.QUEUED.value,
                        VideoModel.updated_at < queued_before,
                    )
                )
                .scalars()
                .all()
            )

    def find_expired_assets(self, session: Session | None = None) -> list[tuple[UUID, str]]:
        """``(id, public_id)`` of EXPIRED videos whose asset is still stored."""
        with self.session(session) as s:
            rows = s.execute(
                select(VideoModel.id, VideoModel.cloudinary_public_id).where(
                    VideoModel.status == VideoStatus.EXPIRED.value,
                    VideoModel.cloudinary_public_id.is_not(None),
                )
            ).all()
            return [(row.id, row.cloudinary_public_id) for row in rows]
