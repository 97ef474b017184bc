"""
Custom Exception Classes for the Video Feed API.

Every failure the feed, view-tracking and storage services can report is a
subclass of `VideoAPIException`, which carries a human readable message, a
stable `error_code` and a `details` dictionary that is safe to return to
clients.

Taxonomy:
- Persistence: `PersistenceError` (store unreachable or inconsistent).
- Storage policy rejections: `NoCapacityAvailable`, `InsufficientStorage`,
  `FileTooLarge`. These are client-visible and never retried.
- Upstream provider failures: `UploadFailed`, `LinkResolutionFailed`,
  `StreamUnavailable`.
- Cache: `CacheError`. Never surfaced to callers; the cache layer degrades to
  a miss instead.
- Request level: `VideoNotFoundError`, `StorageAccountNotFoundError`,
  `AlreadyLikedError`, `NotLikedError`, `ValidationError`,
  `AuthenticationError`.

`to_http_exception` maps an exception to FastAPI's `HTTPException` so the HTTP
layer stays the only place that knows about status codes.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException


class VideoAPIException(Exception):
    """Base exception class for the Video Feed API"""

    def __init__(
        self,
        message: str,
        error_code: str = "VIDEO_API_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class PersistenceError(VideoAPIException):
    """Raised when the catalog store cannot be read or written"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Catalog operation '{operation}' failed: {reason}",
            "PERSISTENCE_ERROR",
            {"operation": operation, "reason": reason},
        )


class NoCapacityAvailable(VideoAPIException):
    """Raised when no active storage account has usable free space"""

    def __init__(self, min_free_gb: float):
        super().__init__(
            f"No active storage account has at least {min_free_gb:.2f}GB free",
            "NO_CAPACITY_AVAILABLE",
            {"min_free_gb": min_free_gb},
        )


class InsufficientStorage(VideoAPIException):
    """Raised when a file does not fit in the selected account"""

    def __init__(self, account_name: str, file_size_gb: float, available_gb: float):
        super().__init__(
            f"File size ({file_size_gb:.2f}GB) exceeds available storage "
            f"({available_gb:.2f}GB) in account '{account_name}'",
            "INSUFFICIENT_STORAGE",
            {
                "account_name": account_name,
                "file_size_gb": file_size_gb,
                "available_gb": available_gb,
            },
        )


class FileTooLarge(VideoAPIException):
    """Raised when a file exceeds the per-file share of an account's limit"""

    def __init__(self, account_name: str, file_size_gb: float, max_allowed_gb: float):
        super().__init__(
            f"File size ({file_size_gb:.2f}GB) exceeds maximum allowed file size "
            f"({max_allowed_gb:.2f}GB) for account '{account_name}'",
            "FILE_TOO_LARGE",
            {
                "account_name": account_name,
                "file_size_gb": file_size_gb,
                "max_allowed_gb": max_allowed_gb,
            },
        )


class UploadFailed(VideoAPIException):
    """Raised when the remote storage provider rejects or drops an upload"""

    def __init__(self, filename: str, reason: str):
        super().__init__(
            f"Upload of '{filename}' failed: {reason}",
            "UPLOAD_FAILED",
            {"filename": filename, "reason": reason},
        )


class LinkResolutionFailed(VideoAPIException):
    """Raised when the provider cannot issue a streaming link"""

    def __init__(self, remote_file_id: str, reason: str):
        super().__init__(
            f"Could not resolve link for remote file {remote_file_id}: {reason}",
            "LINK_RESOLUTION_FAILED",
            {"remote_file_id": remote_file_id, "reason": reason},
        )


class StreamUnavailable(VideoAPIException):
    """Raised when the upstream host of a video cannot be streamed from"""

    def __init__(self, reason: str):
        super().__init__(
            f"Video stream unavailable: {reason}",
            "STREAM_UNAVAILABLE",
            {"reason": reason},
        )


class CacheError(VideoAPIException):
    """Raised by cache backends; always absorbed by the cache manager"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Cache operation '{operation}' failed: {reason}",
            "CACHE_ERROR",
            {"operation": operation, "reason": reason},
        )


class VideoNotFoundError(VideoAPIException):
    """Raised when a video cannot be found"""

    def __init__(self, video_ref: str):
        super().__init__(
            f"Video not found: {video_ref}",
            "VIDEO_NOT_FOUND",
            {"video": video_ref},
        )


class StorageAccountNotFoundError(VideoAPIException):
    """Raised when a storage account id does not resolve"""

    def __init__(self, account_id: str):
        super().__init__(
            f"Storage account not found: {account_id}",
            "STORAGE_ACCOUNT_NOT_FOUND",
            {"account_id": account_id},
        )


class AlreadyLikedError(VideoAPIException):
    """Raised when a user likes a video twice"""

    def __init__(self, video_id: str, user_id: str):
        super().__init__(
            "Video already liked",
            "ALREADY_LIKED",
            {"video_id": video_id, "user_id": user_id},
        )


class NotLikedError(VideoAPIException):
    """Raised when a user removes a like that does not exist"""

    def __init__(self, video_id: str, user_id: str):
        super().__init__(
            "Video not liked",
            "NOT_LIKED",
            {"video_id": video_id, "user_id": user_id},
        )


class ValidationError(VideoAPIException):
    """Raised when input validation fails"""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            "VALIDATION_ERROR",
            {"field": field, "value": str(value), "reason": reason},
        )


class AuthenticationError(VideoAPIException):
    """Raised when authentication fails"""

    def __init__(self, reason: str):
        super().__init__(
            f"Authentication failed: {reason}",
            "AUTHENTICATION_ERROR",
            {"reason": reason},
        )


STATUS_CODE_MAP = {
    "VALIDATION_ERROR": 400,
    "AUTHENTICATION_ERROR": 401,
    "VIDEO_NOT_FOUND": 404,
    "STORAGE_ACCOUNT_NOT_FOUND": 404,
    "ALREADY_LIKED": 409,
    "NOT_LIKED": 409,
    "NO_CAPACITY_AVAILABLE": 409,
    "INSUFFICIENT_STORAGE": 409,
    "FILE_TOO_LARGE": 413,
    "UPLOAD_FAILED": 502,
    "LINK_RESOLUTION_FAILED": 502,
    "STREAM_UNAVAILABLE": 502,
    "PERSISTENCE_ERROR": 503,
    "CACHE_ERROR": 500,
}


def status_code_for(exc: VideoAPIException) -> int:
    return STATUS_CODE_MAP.get(exc.error_code, 500)


def to_http_exception(exc: VideoAPIException) -> HTTPException:
    """Convert VideoAPIException to FastAPI HTTPException"""
    return HTTPException(
        status_code=status_code_for(exc),
        detail={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )
