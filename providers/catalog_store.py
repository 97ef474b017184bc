"""
Catalog Store

Durable repository for videos, watch sessions, likes and storage accounts.
The feed, view and storage services only talk to the narrow `CatalogStore`
interface; `SQLCatalogStore` implements it on SQLModel tables through an
async SQLAlchemy session factory.

Contract shared by every implementation:
- Every failure surfaces as `PersistenceError`.
- Counter updates are single atomic statements (`view_count = view_count + 1`)
  so concurrent increments never lose an update.
- `upsert_watch_session` writes the session row and, when asked, the view
  counter increment in one transaction: either both land or neither does.
- Read-modify-write of one watch session is serialized by the store. The SQL
  implementation relies on the unique (session_id, video_id) constraint plus
  row-level locking of the database it runs on.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import Database
from core.exceptions import PersistenceError
from core.logging_config import get_logger
from core.models import (
    StorageAccount,
    Video,
    VideoLike,
    WatchSession,
    as_naive_utc,
    utcnow,
)

logger = get_logger(__name__)


class CatalogStore(ABC):
    """Abstract catalog repository consumed by the core services"""

    # Videos

    @abstractmethod
    async def get_video(self, video_id: UUID) -> Optional[Video]:
        pass

    @abstractmethod
    async def get_video_by_wrapper_token(self, token: str) -> Optional[Video]:
        pass

    @abstractmethod
    async def create_video(self, video: Video) -> Video:
        pass

    @abstractmethod
    async def save_video(self, video: Video) -> Video:
        pass

    @abstractmethod
    async def delete_video(self, video_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_published_videos_page(
        self, page: int, page_size: int
    ) -> Tuple[List[Video], int]:
        """One page of published videos, newest and most viewed first, plus total"""

    @abstractmethod
    async def increment_view_count(self, video_id: UUID) -> None:
        pass

    @abstractmethod
    async def increment_like_count(self, video_id: UUID) -> None:
        pass

    @abstractmethod
    async def decrement_like_count(self, video_id: UUID) -> None:
        """Decrement, never going below zero"""

    # Watch sessions

    @abstractmethod
    async def find_watch_session(
        self, session_id: str, video_id: UUID
    ) -> Optional[WatchSession]:
        pass

    @abstractmethod
    async def upsert_watch_session(
        self, watch_session: WatchSession, increment_view: bool = False
    ) -> WatchSession:
        pass

    # Likes

    @abstractmethod
    async def find_like(self, video_id: UUID, user_id: str) -> Optional[VideoLike]:
        pass

    @abstractmethod
    async def add_like(self, video_id: UUID, user_id: str) -> bool:
        """Record a like and bump the counter; False if it already existed"""

    @abstractmethod
    async def remove_like(self, video_id: UUID, user_id: str) -> bool:
        """Drop a like and lower the counter; False if there was none"""

    # Storage accounts

    @abstractmethod
    async def list_storage_accounts(self, active_only: bool = True) -> List[StorageAccount]:
        pass

    @abstractmethod
    async def get_storage_account(self, account_id: UUID) -> Optional[StorageAccount]:
        pass

    @abstractmethod
    async def create_storage_account(self, account: StorageAccount) -> StorageAccount:
        pass

    @abstractmethod
    async def update_storage_used(self, account_id: UUID, storage_used_gb: float) -> None:
        pass

    @abstractmethod
    async def set_storage_account_active(
        self, account_id: UUID, is_active: bool
    ) -> Optional[StorageAccount]:
        """Flip the active flag; None if the account does not exist"""

    # Source links

    @abstractmethod
    async def list_videos_with_expiring_links(self, within: timedelta) -> List[Video]:
        """Videos whose source URL expires before now + `within` (or already has)"""

    @abstractmethod
    async def update_source_url(
        self, video_id: UUID, source_url: str, expires_at: datetime
    ) -> None:
        pass


class SQLCatalogStore(CatalogStore):
    """Catalog store on SQLModel tables"""

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Read session; database errors become PersistenceError"""
        try:
            async with self.database.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Catalog {operation} failed: {e}")
            raise PersistenceError(operation, str(e)) from e

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session with a transaction committed on exit, rolled back on error"""
        async with self._session(operation) as session:
            async with session.begin():
                yield session

    # Videos

    async def get_video(self, video_id: UUID) -> Optional[Video]:
        async with self._session("get_video") as session:
            return await session.get(Video, video_id)

    async def get_video_by_wrapper_token(self, token: str) -> Optional[Video]:
        async with self._session("get_video_by_wrapper_token") as session:
            result = await session.execute(
                select(Video).where(Video.wrapper_token == token)
            )
            return result.scalars().first()

    async def create_video(self, video: Video) -> Video:
        if video.is_published and video.published_at is None:
            video.published_at = utcnow()
        async with self._transaction("create_video") as session:
            session.add(video)
        return video

    async def save_video(self, video: Video) -> Video:
        video.updated_at = utcnow()
        async with self._transaction("save_video") as session:
            merged = await session.merge(video)
        return merged

    async def delete_video(self, video_id: UUID) -> bool:
        async with self._transaction("delete_video") as session:
            await session.execute(
                delete(WatchSession).where(WatchSession.video_id == video_id)
            )
            await session.execute(delete(VideoLike).where(VideoLike.video_id == video_id))
            result = await session.execute(delete(Video).where(Video.id == video_id))
            return result.rowcount > 0

    async def list_published_videos_page(
        self, page: int, page_size: int
    ) -> Tuple[List[Video], int]:
        offset = (page - 1) * page_size
        async with self._session("list_published_videos_page") as session:
            total = await session.scalar(
                select(func.count()).select_from(Video).where(Video.is_published.is_(True))
            )
            result = await session.execute(
                select(Video)
                .where(Video.is_published.is_(True))
                .order_by(Video.published_at.desc(), Video.view_count.desc(), Video.id)
                .offset(offset)
                .limit(page_size)
            )
            return list(result.scalars().all()), int(total or 0)

    async def increment_view_count(self, video_id: UUID) -> None:
        async with self._transaction("increment_view_count") as session:
            await session.execute(
                update(Video)
                .where(Video.id == video_id)
                .values(view_count=Video.view_count + 1)
            )

    async def increment_like_count(self, video_id: UUID) -> None:
        async with self._transaction("increment_like_count") as session:
            await self._bump_likes(session, video_id, 1)

    async def decrement_like_count(self, video_id: UUID) -> None:
        async with self._transaction("decrement_like_count") as session:
            await self._bump_likes(session, video_id, -1)

    @staticmethod
    async def _bump_likes(session: AsyncSession, video_id: UUID, delta: int) -> None:
        if delta > 0:
            new_value = Video.like_count + delta
        else:
            new_value = case(
                (Video.like_count + delta > 0, Video.like_count + delta), else_=0
            )
        await session.execute(
            update(Video).where(Video.id == video_id).values(like_count=new_value)
        )

    # Watch sessions

    async def find_watch_session(
        self, session_id: str, video_id: UUID
    ) -> Optional[WatchSession]:
        async with self._session("find_watch_session") as session:
            result = await session.execute(
                select(WatchSession).where(
                    WatchSession.session_id == session_id,
                    WatchSession.video_id == video_id,
                )
            )
            return result.scalars().first()

    async def upsert_watch_session(
        self, watch_session: WatchSession, increment_view: bool = False
    ) -> WatchSession:
        async with self._transaction("upsert_watch_session") as session:
            merged = await session.merge(watch_session)
            if increment_view:
                await session.execute(
                    update(Video)
                    .where(Video.id == watch_session.video_id)
                    .values(view_count=Video.view_count + 1)
                )
        return merged

    # Likes

    async def find_like(self, video_id: UUID, user_id: str) -> Optional[VideoLike]:
        async with self._session("find_like") as session:
            result = await session.execute(
                select(VideoLike).where(
                    VideoLike.video_id == video_id, VideoLike.user_id == user_id
                )
            )
            return result.scalars().first()

    async def add_like(self, video_id: UUID, user_id: str) -> bool:
        try:
            async with self._transaction("add_like") as session:
                session.add(VideoLike(video_id=video_id, user_id=user_id))
                await session.flush()
                await self._bump_likes(session, video_id, 1)
        except PersistenceError as e:
            if isinstance(e.__cause__, IntegrityError):
                return False
            raise
        return True

    async def remove_like(self, video_id: UUID, user_id: str) -> bool:
        async with self._transaction("remove_like") as session:
            result = await session.execute(
                delete(VideoLike).where(
                    VideoLike.video_id == video_id, VideoLike.user_id == user_id
                )
            )
            if result.rowcount == 0:
                return False
            await self._bump_likes(session, video_id, -1)
        return True

    # Storage accounts

    async def list_storage_accounts(self, active_only: bool = True) -> List[StorageAccount]:
        query = select(StorageAccount).order_by(StorageAccount.created_at)
        if active_only:
            query = query.where(StorageAccount.is_active.is_(True))
        async with self._session("list_storage_accounts") as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_storage_account(self, account_id: UUID) -> Optional[StorageAccount]:
        async with self._session("get_storage_account") as session:
            return await session.get(StorageAccount, account_id)

    async def create_storage_account(self, account: StorageAccount) -> StorageAccount:
        async with self._transaction("create_storage_account") as session:
            session.add(account)
        return account

    async def update_storage_used(self, account_id: UUID, storage_used_gb: float) -> None:
        async with self._transaction("update_storage_used") as session:
            await session.execute(
                update(StorageAccount)
                .where(StorageAccount.id == account_id)
                .values(storage_used_gb=storage_used_gb, updated_at=utcnow())
            )

    async def set_storage_account_active(
        self, account_id: UUID, is_active: bool
    ) -> Optional[StorageAccount]:
        async with self._transaction("set_storage_account_active") as session:
            account = await session.get(StorageAccount, account_id)
            if account is None:
                return None
            account.is_active = is_active
            account.updated_at = utcnow()
            session.add(account)
        return account

    # Source links

    async def list_videos_with_expiring_links(self, within: timedelta) -> List[Video]:
        cutoff = utcnow() + within
        async with self._session("list_videos_with_expiring_links") as session:
            result = await session.execute(
                select(Video)
                .where(
                    Video.source_url_expires_at.is_not(None),
                    Video.source_url_expires_at < cutoff,
                )
                .order_by(Video.source_url_expires_at)
            )
            return list(result.scalars().all())

    async def update_source_url(
        self, video_id: UUID, source_url: str, expires_at: datetime
    ) -> None:
        async with self._transaction("update_source_url") as session:
            await session.execute(
                update(Video)
                .where(Video.id == video_id)
                .values(
                    source_url=source_url,
                    source_url_expires_at=as_naive_utc(expires_at),
                    updated_at=utcnow(),
                )
            )
