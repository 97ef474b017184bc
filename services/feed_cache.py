"""
Feed Cache Service.

Serves ranked feed pages cache-aside. A page is computed from the catalog and
the scoring module, stored under `feed:page:{page}:limit:{size}:gen:{generation}`
for a fixed TTL, and served from the cache until it expires or the whole feed
namespace is invalidated.

The generation is an opaque token kept under `feed_generation`, outside the
`feed:*` namespace. A reader takes the generation before it queries the
catalog and writes the page under that generation. `invalidate_feed()` installs
a new generation before deleting the namespace, so a page computed before an
invalidation and written after it lands under a key no reader asks for again.

Invalidation always drops every cached page. A like, a view or a publish can
move a video between any two pages, so dropping only page 1 would leave the
others stale. Every mutation of a counted entity (video create, update or
delete, like added or removed, view counter increment) calls
`invalidate_feed()` as part of the same logical operation. If an invalidation
is lost anyway, the TTL bounds how long stale rankings can be served.

The cache never fails a feed request: `CacheManager` turns backend errors
into misses, and a cached payload that no longer parses is treated as a miss
too.
"""

import logging
import uuid
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from core.cache import CacheManager, cache_key
from core.models import FeedPage, VideoSnapshot
from core.scoring import rank_page
from providers.catalog_store import CatalogStore

logger = logging.getLogger(__name__)

FEED_KEY_PREFIX = "feed"
FEED_KEY_PATTERN = f"{FEED_KEY_PREFIX}:*"
DEFAULT_FEED_TTL_SECONDS = 300
FEED_GENERATION_KEY = "feed_generation"
INITIAL_GENERATION = "0"


def feed_page_key(page: int, page_size: int, generation: str = INITIAL_GENERATION) -> str:
    return cache_key(FEED_KEY_PREFIX, "page", page, "limit", page_size, "gen", generation)


class FeedCache:
    """Cache-aside wrapper around the ranked feed query"""

    def __init__(
        self,
        store: CatalogStore,
        cache: CacheManager,
        ttl_seconds: int = DEFAULT_FEED_TTL_SECONDS,
    ):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def get_feed_page(self, page: int, page_size: int) -> FeedPage:
        """
        Return one ranked feed page.

        A cache hit is returned as-is (no staleness check beyond the TTL). On a
        miss the page is fetched from the catalog, re-ranked by score and
        written back best-effort. Catalog failures propagate as
        `PersistenceError`.
        """
        generation = await self._generation()
        key = feed_page_key(page, page_size, generation)

        cached = await self._read(key)
        if cached is not None:
            logger.debug(f"Feed cache hit for {key}")
            return cached

        feed_page = await self._compute(page, page_size)
        await self.cache.set(key, feed_page.model_dump(mode="json"), self.ttl_seconds)
        return feed_page

    async def invalidate_feed(self) -> int:
        """Drop every cached feed page; returns the number of keys removed"""
        # Page keys are derived from the generation; a page still being
        # computed under the old one can no longer be read once it is written.
        await self.cache.set(FEED_GENERATION_KEY, uuid.uuid4().hex, 0)
        removed = await self.cache.invalidate_pattern(FEED_KEY_PATTERN)
        logger.debug(f"Feed cache invalidated ({removed} pages)")
        return removed

    async def _generation(self) -> str:
        value = await self.cache.get(FEED_GENERATION_KEY)
        return INITIAL_GENERATION if value is None else str(value)

    async def _read(self, key: str) -> Optional[FeedPage]:
        payload = await self.cache.get(key)
        if payload is None:
            return None
        try:
            return FeedPage.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning(f"Discarding unreadable feed cache entry {key}: {e}")
            await self.cache.delete(key)
            return None

    async def _compute(self, page: int, page_size: int) -> FeedPage:
        videos, total = await self.store.list_published_videos_page(page, page_size)
        ranked = rank_page(videos)
        return FeedPage(
            videos=[VideoSnapshot.from_video(video, score) for video, score in ranked],
            total=total,
            page=page,
            page_size=page_size,
        )
