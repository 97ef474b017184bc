import pytest
import uuid
from datetime import datetime
from fastapi import status

from core.exceptions import (
    AlreadyLikedError,
    NoCapacityAvailable,
    PersistenceError,
    StorageAccountNotFoundError,
    StreamUnavailable,
    ValidationError,
    VideoNotFoundError,
)
from core.models import (
    FeedPage,
    LinkResolution,
    RefreshReport,
    StorageAccountSummary,
    TrackViewResult,
    UploadedVideo,
    UploadResult,
    VideoSnapshot,
)

VIDEO_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


def snapshot(**overrides) -> VideoSnapshot:
    values = {
        "id": VIDEO_ID,
        "wrapper_token": "tok-abc",
        "title": "Clip",
        "view_count": 10,
        "like_count": 2,
    }
    values.update(overrides)
    return VideoSnapshot(**values)


def account_summary(active=True) -> StorageAccountSummary:
    return StorageAccountSummary(
        id=uuid.uuid4(),
        account_name="main",
        storage_used_gb=100.0,
        storage_limit_gb=500.0,
        available_gb=400.0,
        is_active=active,
    )


class FakeUpstream:
    def __init__(self, status_code, headers, chunks):
        self.status = status_code
        self.headers = headers
        self.chunks = chunks
        self.closed = False

    async def iter_chunks(self):
        for chunk in self.chunks:
            yield chunk

    async def close(self):
        self.closed = True


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_healthcheck(self, test_client):
        response = test_client.get("/healthcheck")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "Video Feed API"
        assert "timestamp" in data

    def test_detailed_all_healthy(self, test_client, mock_video_service):
        mock_video_service.list_storage_accounts.return_value = [account_summary()]

        response = test_client.get("/monitoring/detailed")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"]["status"] == "healthy"
        assert data["components"]["storage"]["active_accounts"] == 1
        assert data["components"]["storage"]["available_gb"] == 400.0

    def test_detailed_degraded_without_storage(self, test_client, mock_video_service):
        mock_video_service.list_storage_accounts.return_value = [account_summary(active=False)]

        data = test_client.get("/monitoring/detailed").json()

        assert data["status"] == "degraded"
        assert data["components"]["storage"]["status"] == "unavailable"

    def test_detailed_unhealthy_database(self, test_client, mock_video_service):
        from main import app

        app.state.container.database.health_check.return_value = {
            "status": "unhealthy",
            "error": "connection refused",
        }
        mock_video_service.list_storage_accounts.return_value = [account_summary()]

        data = test_client.get("/monitoring/detailed").json()

        assert data["status"] == "unhealthy"

    def test_detailed_storage_lookup_failure(self, test_client, mock_video_service):
        mock_video_service.list_storage_accounts.side_effect = PersistenceError(
            "list_storage_accounts", "down"
        )

        data = test_client.get("/monitoring/detailed").json()

        assert data["status"] == "degraded"
        assert "error" in data["components"]["storage"]


class TestFeedEndpoints:
    """Test public feed and lookup endpoints."""

    def test_feed_defaults(self, test_client, mock_video_service):
        mock_video_service.get_feed_page.return_value = FeedPage(
            videos=[snapshot(score=180.7)], total=1, page=1, page_size=20
        )

        response = test_client.get("/api/feed")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["videos"][0]["score"] == 180.7
        mock_video_service.get_feed_page.assert_awaited_once_with(1, 20)

    def test_feed_query_parameters(self, test_client, mock_video_service):
        mock_video_service.get_feed_page.return_value = FeedPage(
            videos=[], total=0, page=3, page_size=5
        )

        test_client.get("/api/feed?page=3&limit=5")

        mock_video_service.get_feed_page.assert_awaited_once_with(3, 5)

    def test_feed_invalid_page(self, test_client, mock_video_service):
        mock_video_service.get_feed_page.side_effect = ValidationError("page", 0, "must be at least 1")

        response = test_client.get("/api/feed?page=0")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_feed_store_unavailable(self, test_client, mock_video_service):
        mock_video_service.get_feed_page.side_effect = PersistenceError("list", "down")

        response = test_client.get("/api/feed")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_video_by_token(self, test_client, mock_video_service):
        mock_video_service.get_video_by_wrapper_token.return_value = snapshot()

        response = test_client.get("/api/videos/tok-abc")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["wrapper_token"] == "tok-abc"
        assert "source_url" not in response.json()
        mock_video_service.get_video_by_wrapper_token.assert_awaited_once_with("tok-abc")

    def test_video_by_unknown_token(self, test_client, mock_video_service):
        mock_video_service.get_video_by_wrapper_token.side_effect = VideoNotFoundError("nope")

        response = test_client.get("/api/videos/nope", headers={"X-Correlation-ID": "req-9"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        error = response.json()["error"]
        assert error["code"] == "VIDEO_NOT_FOUND"
        assert error["correlation_id"] == "req-9"


class TestViewEndpoint:
    """Test playback progress reports."""

    def test_view_tracked(self, test_client, mock_video_service):
        mock_video_service.track_view.return_value = TrackViewResult(
            incremented=True, watched_percentage=45.0
        )

        response = test_client.post(
            f"/api/videos/{VIDEO_ID}/view",
            json={"session_id": "s1", "watch_duration_seconds": 45, "video_duration_seconds": 100},
            headers={"X-User-ID": "user-1", "User-Agent": "pytest", "X-Forwarded-For": "203.0.113.5"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"tracked": True, "incremented": True, "watched_percentage": 45.0}
        mock_video_service.track_view.assert_awaited_once_with(
            VIDEO_ID,
            "s1",
            45,
            100,
            user_id="user-1",
            viewer_ip="203.0.113.5",
            user_agent="pytest",
        )

    def test_view_without_duration_or_user(self, test_client, mock_video_service):
        mock_video_service.track_view.return_value = TrackViewResult(
            incremented=False, watched_percentage=5.0
        )

        response = test_client.post(
            f"/api/videos/{VIDEO_ID}/view",
            json={"session_id": "s1", "watch_duration_seconds": 5},
        )

        assert response.status_code == status.HTTP_200_OK
        call = mock_video_service.track_view.await_args
        assert call.args[3] is None
        assert call.kwargs["user_id"] is None

    def test_view_store_failure_is_not_an_error(self, test_client, mock_video_service):
        mock_video_service.track_view.side_effect = PersistenceError("upsert_watch_session", "down")

        response = test_client.post(
            f"/api/videos/{VIDEO_ID}/view",
            json={"session_id": "s1", "watch_duration_seconds": 45},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["tracked"] is False

    def test_view_unknown_video(self, test_client, mock_video_service):
        mock_video_service.track_view.side_effect = VideoNotFoundError(str(VIDEO_ID))

        response = test_client.post(
            f"/api/videos/{VIDEO_ID}/view",
            json={"session_id": "s1", "watch_duration_seconds": 45},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_view_body_validation(self, test_client):
        response = test_client.post(f"/api/videos/{VIDEO_ID}/view", json={"session_id": "s1"})
        assert response.status_code == 422


class TestLikeEndpoints:
    """Test like and unlike."""

    def test_like(self, test_client, mock_video_service):
        mock_video_service.like_video.return_value = snapshot(like_count=3)

        response = test_client.post(f"/api/videos/{VIDEO_ID}/like", headers={"X-User-ID": "user-1"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["like_count"] == 3
        mock_video_service.like_video.assert_awaited_once_with(VIDEO_ID, "user-1")

    def test_like_requires_user(self, test_client, mock_video_service):
        response = test_client.post(f"/api/videos/{VIDEO_ID}/like")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"
        mock_video_service.like_video.assert_not_awaited()

    def test_like_user_id_too_long(self, test_client):
        response = test_client.post(
            f"/api/videos/{VIDEO_ID}/like", headers={"X-User-ID": "u" * 256}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_double_like_conflicts(self, test_client, mock_video_service):
        mock_video_service.like_video.side_effect = AlreadyLikedError(str(VIDEO_ID), "user-1")

        response = test_client.post(f"/api/videos/{VIDEO_ID}/like", headers={"X-User-ID": "user-1"})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"]["code"] == "ALREADY_LIKED"

    def test_unlike(self, test_client, mock_video_service):
        mock_video_service.unlike_video.return_value = snapshot(like_count=1)

        response = test_client.delete(f"/api/videos/{VIDEO_ID}/like", headers={"X-User-ID": "user-1"})

        assert response.status_code == status.HTTP_200_OK
        mock_video_service.unlike_video.assert_awaited_once_with(VIDEO_ID, "user-1")


class TestAdminAuthentication:
    """Every admin route requires the API key."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/admin/storage-accounts"),
            ("post", "/api/admin/jobs/refresh-links"),
            ("post", f"/api/admin/videos/{VIDEO_ID}/refresh-link"),
            ("delete", f"/api/admin/videos/{VIDEO_ID}"),
        ],
    )
    def test_missing_key(self, test_client, mock_video_service, method, path):
        response = getattr(test_client, method)(path)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"

    def test_wrong_key(self, test_client):
        response = test_client.get("/api/admin/storage-accounts", headers={"X-API-Key": "wrong"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestAdminEndpoints:
    """Test upload, edit, delete and link maintenance."""

    def test_upload(self, test_client, mock_video_service, admin_headers):
        account_id = uuid.uuid4()
        mock_video_service.upload_video.return_value = UploadedVideo(
            video=snapshot(title="Launch"),
            storage=UploadResult(
                account_id=account_id,
                account_name="main",
                remote_file_id="12345",
                content_hash="abc",
                file_size_gb=0.001,
                storage_used_gb=100.001,
                storage_limit_gb=500.0,
            ),
        )

        response = test_client.post(
            "/api/admin/videos/upload",
            headers=admin_headers,
            files={"file": ("launch.mp4", b"0123456789", "video/mp4")},
            data={"title": "  Launch ", "tags": "news, live ,,", "duration_seconds": "90"},
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["storage"]["remote_file_id"] == "12345"
        data, filename, size, metadata = mock_video_service.upload_video.await_args.args
        assert data == b"0123456789"
        assert filename == "launch.mp4"
        assert size == 10
        assert metadata.title == "Launch"
        assert metadata.tags == ["news", "live"]
        assert metadata.duration_seconds == 90

    def test_upload_without_capacity(self, test_client, mock_video_service, admin_headers):
        mock_video_service.upload_video.side_effect = NoCapacityAvailable(0.1)

        response = test_client.post(
            "/api/admin/videos/upload",
            headers=admin_headers,
            files={"file": ("a.mp4", b"x", "video/mp4")},
            data={"title": "A"},
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"]["code"] == "NO_CAPACITY_AVAILABLE"

    def test_update(self, test_client, mock_video_service, admin_headers):
        mock_video_service.update_video.return_value = snapshot(title="Renamed")

        response = test_client.patch(
            f"/api/admin/videos/{VIDEO_ID}", headers=admin_headers, json={"title": "Renamed"}
        )

        assert response.status_code == status.HTTP_200_OK
        video_id, changes = mock_video_service.update_video.await_args.args
        assert video_id == VIDEO_ID
        assert changes.model_dump(exclude_unset=True) == {"title": "Renamed"}

    def test_delete(self, test_client, mock_video_service, admin_headers):
        mock_video_service.delete_video.return_value = None

        response = test_client.delete(f"/api/admin/videos/{VIDEO_ID}", headers=admin_headers)

        assert response.status_code == status.HTTP_204_NO_CONTENT
        mock_video_service.delete_video.assert_awaited_once_with(VIDEO_ID)

    def test_delete_unknown(self, test_client, mock_video_service, admin_headers):
        mock_video_service.delete_video.side_effect = VideoNotFoundError(str(VIDEO_ID))

        response = test_client.delete(f"/api/admin/videos/{VIDEO_ID}", headers=admin_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_refresh_single_link(self, test_client, mock_video_service, admin_headers):
        mock_video_service.refresh_video_link.return_value = LinkResolution(
            url="https://c1.pcloud.test/new.mp4", expires_at=datetime(2026, 1, 24, 10)
        )

        response = test_client.post(
            f"/api/admin/videos/{VIDEO_ID}/refresh-link", headers=admin_headers
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["url"] == "https://c1.pcloud.test/new.mp4"

    def test_refresh_sweep(self, test_client, mock_video_service, admin_headers):
        mock_video_service.run_link_refresh_sweep.return_value = RefreshReport(
            checked=3, refreshed=2, failed=1
        )

        response = test_client.post("/api/admin/jobs/refresh-links", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["refreshed"] == 2
        assert response.json()["skipped"] is False

    def test_storage_accounts(self, test_client, mock_video_service, admin_headers):
        mock_video_service.list_storage_accounts.return_value = [account_summary()]

        response = test_client.get("/api/admin/storage-accounts", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        accounts = response.json()
        assert accounts[0]["available_gb"] == 400.0
        assert "api_token" not in accounts[0]

    def test_create_storage_account(self, test_client, mock_video_service, admin_headers):
        mock_video_service.register_storage_account.return_value = StorageAccountSummary(
            id=uuid.uuid4(),
            account_name="backup",
            storage_used_gb=0.0,
            storage_limit_gb=200.0,
            available_gb=200.0,
            is_active=True,
        )

        response = test_client.post(
            "/api/admin/storage-accounts",
            headers=admin_headers,
            json={"account_name": "backup", "api_token": "secret", "storage_limit_gb": 200},
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["is_active"] is True
        assert body["storage_used_gb"] == 0.0
        assert "api_token" not in body
        mock_video_service.register_storage_account.assert_awaited_once_with(
            "backup", "secret", 200.0
        )

    def test_create_storage_account_rejected(self, test_client, mock_video_service, admin_headers):
        mock_video_service.register_storage_account.side_effect = ValidationError(
            "storage_limit_gb", 0, "must be positive"
        )

        response = test_client.post(
            "/api/admin/storage-accounts",
            headers=admin_headers,
            json={"account_name": "backup", "api_token": "secret", "storage_limit_gb": 0},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_create_storage_account_requires_key(self, test_client, mock_video_service):
        response = test_client.post(
            "/api/admin/storage-accounts",
            json={"account_name": "backup", "api_token": "secret", "storage_limit_gb": 200},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        mock_video_service.register_storage_account.assert_not_awaited()

    def test_toggle_storage_account(self, test_client, mock_video_service, admin_headers):
        summary = account_summary(active=False)
        mock_video_service.set_storage_account_active.return_value = summary

        response = test_client.post(
            f"/api/admin/storage-accounts/{summary.id}/toggle",
            headers=admin_headers,
            json={"is_active": False},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["is_active"] is False
        mock_video_service.set_storage_account_active.assert_awaited_once_with(summary.id, False)

    def test_toggle_unknown_storage_account(self, test_client, mock_video_service, admin_headers):
        account_id = uuid.uuid4()
        mock_video_service.set_storage_account_active.side_effect = StorageAccountNotFoundError(
            str(account_id)
        )

        response = test_client.post(
            f"/api/admin/storage-accounts/{account_id}/toggle",
            headers=admin_headers,
            json={"is_active": True},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"]["code"] == "STORAGE_ACCOUNT_NOT_FOUND"


class TestStreamEndpoint:
    """Test the video stream relay."""

    def test_range_is_forwarded_and_partial_content_relayed(
        self, test_client, mock_video_service, mock_stream_proxy
    ):
        mock_video_service.get_stream_source.return_value = "https://c1.pcloud.test/dl/clip.mp4"
        upstream = FakeUpstream(
            206,
            {
                "Content-Type": "video/mp4",
                "Content-Length": "10",
                "Content-Range": "bytes 0-9/1000",
                "Accept-Ranges": "bytes",
                "Cache-Control": "no-store",
            },
            [b"01234", b"56789"],
        )
        mock_stream_proxy.open.return_value = upstream

        response = test_client.get("/stream/tok-abc", headers={"Range": "bytes=0-9"})

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        assert response.content == b"0123456789"
        assert response.headers["content-range"] == "bytes 0-9/1000"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-length"] == "10"
        mock_video_service.get_stream_source.assert_awaited_once_with("tok-abc")
        mock_stream_proxy.open.assert_awaited_once_with(
            "https://c1.pcloud.test/dl/clip.mp4", "bytes=0-9"
        )
        assert upstream.closed

    def test_full_file_without_range(self, test_client, mock_video_service, mock_stream_proxy):
        mock_video_service.get_stream_source.return_value = "https://c1.pcloud.test/dl/clip.mp4"
        mock_stream_proxy.open.return_value = FakeUpstream(
            200, {"Content-Type": "video/mp4", "Accept-Ranges": "bytes"}, [b"whole"]
        )

        response = test_client.get("/stream/tok-abc")

        assert response.status_code == status.HTTP_200_OK
        assert response.content == b"whole"
        mock_stream_proxy.open.assert_awaited_once_with("https://c1.pcloud.test/dl/clip.mp4", None)

    def test_unknown_token(self, test_client, mock_video_service, mock_stream_proxy):
        mock_video_service.get_stream_source.side_effect = VideoNotFoundError("nope")

        response = test_client.get("/stream/nope", headers={"Range": "bytes=0-"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"]["code"] == "VIDEO_NOT_FOUND"
        mock_stream_proxy.open.assert_not_awaited()

    def test_upstream_unavailable(self, test_client, mock_video_service, mock_stream_proxy):
        mock_video_service.get_stream_source.return_value = "https://c1.pcloud.test/dl/clip.mp4"
        mock_stream_proxy.open.side_effect = StreamUnavailable("upstream returned HTTP 503")

        response = test_client.get("/stream/tok-abc")

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json()["error"]["code"] == "STREAM_UNAVAILABLE"
