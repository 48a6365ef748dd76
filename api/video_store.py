"""
Persistence for video records.

A thin wrapper over the ``videos`` table: lookups by id, owner-scoped listing,
creation of drafts, and updates of the mutable fields. The owner column is
written once on creation and is never part of an update.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from databases import Database

from api.common import ensure_utc
from api.database import videos
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry
from api.schemas import Video

logger = logging.getLogger(__name__)


def _row_to_video(row) -> Video:
    data = dict(row._mapping) if hasattr(row, "_mapping") else dict(row)
    data["created_at"] = ensure_utc(data.get("created_at"))
    data["updated_at"] = ensure_utc(data.get("updated_at"))
    return Video(**data)


class VideoStore:
    """Video metadata store backed by an async ``databases`` connection."""

    def __init__(self, database: Database):
        self.database = database

    async def get(self, video_id: str) -> Optional[Video]:
        row = await fetch_one_with_retry(self.database, videos.select().where(videos.c.id == video_id))
        return _row_to_video(row) if row else None

    async def update(self, video: Video) -> None:
        """Persist the mutable fields of a record (owner excluded)."""
        now = datetime.now(timezone.utc)
        await db_execute_with_retry(
            self.database,
            videos.update()
            .where(videos.c.id == video.id)
            .values(
                title=video.title,
                description=video.description,
                thumbnail_url=video.thumbnail_url,
                video_url=video.video_url,
                updated_at=now,
            ),
        )
        video.updated_at = now

    async def create(self, user_id: str, title: str, description: str = "") -> Video:
        now = datetime.now(timezone.utc)
        video = Video(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            description=description,
            created_at=now,
            updated_at=now,
        )
        await db_execute_with_retry(
            self.database,
            videos.insert().values(
                id=video.id,
                user_id=video.user_id,
                title=video.title,
                description=video.description,
                created_at=now,
                updated_at=now,
            ),
        )
        logger.info(f"Created video {video.id} for user {user_id}")
        return video

    async def list_for_user(self, user_id: str) -> List[Video]:
        rows = await fetch_all_with_retry(
            self.database,
            videos.select().where(videos.c.user_id == user_id).order_by(videos.c.created_at.desc()),
        )
        return [_row_to_video(row) for row in rows]
