"""
Request dependencies.

Everything long-lived (database, cache, storage provider, stream proxy and the
services built on them) is created once in the application lifespan and kept on
`app.state.container`. Routes reach it through the getters below so tests can
swap in a container of mocks.
"""

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from core.cache import CacheManager
from core.config import Settings
from core.database import Database
from core.exceptions import AuthenticationError, ValidationError
from providers.catalog_store import CatalogStore
from providers.storage_provider import RemoteStorageProvider
from providers.stream_proxy import StreamProxy
from services.video_service import VideoService


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    cache: CacheManager
    store: CatalogStore
    provider: RemoteStorageProvider
    video_service: VideoService
    stream_proxy: StreamProxy


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_video_service(
    container: ServiceContainer = Depends(get_container),
) -> VideoService:
    return container.video_service


def get_stream_proxy(container: ServiceContainer = Depends(get_container)) -> StreamProxy:
    return container.stream_proxy


def get_settings(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.settings


async def verify_api_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Admin guard: the X-API-Key header must match the configured key"""
    if not settings.api_key:
        raise AuthenticationError("admin API key is not configured")
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.api_key):
        raise AuthenticationError("invalid API key")


async def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity as forwarded by the upstream token issuer"""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("missing X-User-ID header")
    user_id = x_user_id.strip()
    if len(user_id) > 255:
        raise ValidationError("X-User-ID", user_id[:20], "too long")
    return user_id


async def get_optional_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()[:255]
    return None
