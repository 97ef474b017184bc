import pytest
from datetime import timedelta
from unittest.mock import Mock, AsyncMock
from fastapi.testclient import TestClient
from typing import Generator

from main import app
from api.dependencies import ServiceContainer
from core.cache import CacheManager, MemoryCacheBackend
from core.config import Settings
from core.database import Database
from core.models import StorageAccount, Video, utcnow
from providers.catalog_store import CatalogStore, SQLCatalogStore
from providers.storage_provider import RemoteFile, RemoteLink, RemoteStorageProvider
from providers.stream_proxy import StreamProxy
from services.feed_cache import FeedCache
from services.video_service import VideoService

TEST_API_KEY = "test_api_key"


@pytest.fixture
async def database(tmp_path):
    """Fresh SQLite catalog in a temporary directory."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
async def store(database) -> SQLCatalogStore:
    return SQLCatalogStore(database)


@pytest.fixture
def cache_manager():
    """Create a real in-memory cache manager for testing."""
    return CacheManager(MemoryCacheBackend(max_size=100, default_ttl=60))


@pytest.fixture
def feed_cache(store, cache_manager) -> FeedCache:
    return FeedCache(store, cache_manager, ttl_seconds=300)


@pytest.fixture
def mock_store():
    """CatalogStore double whose every method is an AsyncMock."""
    return AsyncMock(spec=CatalogStore)


@pytest.fixture
def mock_feed_cache():
    cache = Mock(spec=FeedCache)
    cache.get_feed_page = AsyncMock()
    cache.invalidate_feed = AsyncMock(return_value=1)
    return cache


@pytest.fixture
def mock_provider():
    """Remote storage provider that accepts every upload."""
    provider = Mock(spec=RemoteStorageProvider)
    provider.source_name = "mock"
    provider.upload_file = AsyncMock(
        return_value=RemoteFile(file_id="12345", content_hash="abc123")
    )
    provider.get_file_link = AsyncMock(
        return_value=RemoteLink(
            url="https://c1.pcloud.test/dl/video.mp4",
            expires_raw="Sat, 24 Jan 2026 10:00:00 +0000",
        )
    )
    provider.close = AsyncMock()
    return provider


@pytest.fixture
def make_video():
    """Factory for unsaved Video rows."""

    def _make(**overrides) -> Video:
        values = {
            "title": "Test video",
            "description": "A test video",
            "duration_seconds": 100,
            "view_count": 0,
            "like_count": 0,
            "is_published": True,
            "published_at": utcnow() - timedelta(hours=1),
        }
        values.update(overrides)
        return Video(**values)

    return _make


@pytest.fixture
def make_account():
    """Factory for unsaved StorageAccount rows."""

    def _make(name: str = "account-1", used: float = 0.0, limit: float = 500.0, **overrides):
        return StorageAccount(
            account_name=name,
            api_token=f"token-{name}",
            storage_used_gb=used,
            storage_limit_gb=limit,
            **overrides,
        )

    return _make


@pytest.fixture
def mock_video_service():
    service = Mock(spec=VideoService)
    for name in (
        "get_feed_page",
        "get_video_by_wrapper_token",
        "get_stream_source",
        "track_view",
        "like_video",
        "unlike_video",
        "create_video",
        "update_video",
        "delete_video",
        "upload_video",
        "list_storage_accounts",
        "register_storage_account",
        "set_storage_account_active",
        "refresh_video_link",
        "run_link_refresh_sweep",
    ):
        setattr(service, name, AsyncMock())
    return service


@pytest.fixture
def mock_stream_proxy():
    proxy = Mock(spec=StreamProxy)
    proxy.open = AsyncMock()
    proxy.close = AsyncMock()
    return proxy


@pytest.fixture
def test_client(mock_video_service, mock_stream_proxy) -> Generator[TestClient, None, None]:
    """
    Test client with a container of mocks installed.

    The client is not used as a context manager, so the lifespan (database,
    scheduler, provider) never starts.
    """
    database = Mock(spec=Database)
    database.health_check = AsyncMock(
        return_value={"status": "healthy", "database_type": "sqlite"}
    )
    cache = Mock(spec=CacheManager)
    cache.health_check = AsyncMock(return_value={"status": "healthy", "backend_type": "memory"})

    app.state.container = ServiceContainer(
        settings=Settings(api_key=TEST_API_KEY),
        database=database,
        cache=cache,
        store=AsyncMock(spec=CatalogStore),
        provider=Mock(spec=RemoteStorageProvider),
        video_service=mock_video_service,
        stream_proxy=mock_stream_proxy,
    )
    yield TestClient(app)
    del app.state.container


@pytest.fixture
def admin_headers():
    return {"X-API-Key": TEST_API_KEY}


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("API_KEY", TEST_API_KEY)


class AsyncContextManager:
    """Helper class for testing async context managers."""

    def __init__(self, return_value=None):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def async_context_manager():
    """Create an async context manager for testing."""
    return AsyncContextManager
