"""
Storage Rotator Service

Places uploaded video files across a pool of remote storage accounts and
keeps the local usage estimate of each account up to date.

Key Components:
- Account selection: the active account with the most free space wins, as
  long as it has at least `MIN_FREE_GB` left.
- Upload policy: a file must fit in the chosen account and may not take more
  than `MAX_FILE_SHARE` of that account's total limit.
- Accounting: after a successful upload the account's `storage_used_gb` is
  raised by the file size plus a `USAGE_SAFETY_MARGIN` so the local estimate
  stays ahead of the provider's real figure.
- Link resolution: asks the provider for a fresh direct link and parses its
  expiry.
- Pool management: registering new accounts and switching accounts in or
  out of rotation with the `is_active` flag.

Architectural Design:
- The provider is the source of truth for what is stored. Local accounting is
  best effort: a failed bookkeeping write is logged and the upload still
  succeeds. A failed or timed out upload leaves accounting untouched.
- Selection and the accounting write are not one critical section. Two
  concurrent uploads can pick the same account; the per-file cap and the
  margin bound how far that account can overshoot.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import List, Optional
from uuid import UUID

from core.exceptions import (
    FileTooLarge,
    InsufficientStorage,
    LinkResolutionFailed,
    NoCapacityAvailable,
    PersistenceError,
    StorageAccountNotFoundError,
    UploadFailed,
    ValidationError,
)
from core.models import (
    LinkResolution,
    StorageAccount,
    StorageAccountSummary,
    UploadResult,
    as_naive_utc,
    utcnow,
)
from providers.catalog_store import CatalogStore
from providers.storage_provider import ProviderError, RemoteStorageProvider

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3
MIN_FREE_GB = 0.1
MAX_FILE_SHARE = 0.10
USAGE_SAFETY_MARGIN = 1.05
DEFAULT_LINK_LIFETIME = timedelta(hours=24)
MAX_ACCOUNT_NAME_LENGTH = 100


def bytes_to_gb(size_bytes: int) -> float:
    return size_bytes / BYTES_PER_GB


def parse_link_expiry(raw: Optional[str], now: Optional[datetime] = None) -> datetime:
    """
    Parse a provider expiry such as ``Sat, 24 Jan 2026 10:00:00 +0000``.

    Anything missing or unparseable falls back to now + 24h. The result is
    naive UTC.
    """
    now = now or utcnow()
    if not raw:
        return now + DEFAULT_LINK_LIFETIME
    try:
        return as_naive_utc(parsedate_to_datetime(raw))
    except (TypeError, ValueError, IndexError) as e:
        logger.debug(f"Unparseable link expiry {raw!r}: {e}")
        return now + DEFAULT_LINK_LIFETIME


class StorageRotator:
    def __init__(
        self,
        store: CatalogStore,
        provider: RemoteStorageProvider,
        upload_timeout_seconds: float = 300.0,
        link_timeout_seconds: float = 30.0,
    ):
        self.store = store
        self.provider = provider
        self.upload_timeout_seconds = upload_timeout_seconds
        self.link_timeout_seconds = link_timeout_seconds

    async def select_account(self) -> StorageAccount:
        """Active account with the most free space; ties keep catalog order"""
        accounts = await self.store.list_storage_accounts(active_only=True)

        best: Optional[StorageAccount] = None
        for account in accounts:
            if best is None or account.available_gb > best.available_gb:
                best = account

        if best is None or best.available_gb < MIN_FREE_GB:
            raise NoCapacityAvailable(MIN_FREE_GB)
        return best

    async def upload(self, file_bytes: bytes, filename: str, file_size_bytes: int) -> UploadResult:
        """
        Upload a file to the best account and record the usage.

        Raises:
            NoCapacityAvailable: no active account has usable space
            InsufficientStorage: the file does not fit in the chosen account
            FileTooLarge: the file exceeds the per-file share of the account
            UploadFailed: the provider rejected the upload or timed out
        """
        file_size_gb = bytes_to_gb(file_size_bytes)
        account = await self.select_account()

        available_gb = account.available_gb
        if file_size_gb > available_gb:
            raise InsufficientStorage(account.account_name, file_size_gb, available_gb)

        max_allowed_gb = account.storage_limit_gb * MAX_FILE_SHARE
        if file_size_gb > max_allowed_gb:
            raise FileTooLarge(account.account_name, file_size_gb, max_allowed_gb)

        logger.info(
            f"Uploading {filename} ({file_size_gb:.3f}GB) to account {account.account_name}",
            extra={"account_id": str(account.id), "available_gb": available_gb},
        )

        try:
            remote_file = await asyncio.wait_for(
                self.provider.upload_file(account.api_token, file_bytes, filename),
                timeout=self.upload_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Upload of {filename} timed out after {self.upload_timeout_seconds}s")
            raise UploadFailed(filename, f"timed out after {self.upload_timeout_seconds}s")
        except ProviderError as e:
            logger.error(f"Upload of {filename} failed: {e}")
            raise UploadFailed(filename, str(e)) from e

        new_used_gb = account.storage_used_gb + file_size_gb * USAGE_SAFETY_MARGIN
        try:
            await self.store.update_storage_used(account.id, new_used_gb)
        except PersistenceError as e:
            # The file is stored remotely; the usage estimate stays low until fixed by hand
            logger.warning(
                f"Could not record usage for account {account.account_name}: {e.message}",
                extra={"account_id": str(account.id), "storage_used_gb": new_used_gb},
            )

        return UploadResult(
            account_id=account.id,
            account_name=account.account_name,
            remote_file_id=remote_file.file_id,
            content_hash=remote_file.content_hash,
            file_size_gb=file_size_gb,
            storage_used_gb=new_used_gb,
            storage_limit_gb=account.storage_limit_gb,
        )

    async def resolve_link(self, remote_file_id: str, api_token: str) -> LinkResolution:
        try:
            link = await asyncio.wait_for(
                self.provider.get_file_link(api_token, remote_file_id),
                timeout=self.link_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise LinkResolutionFailed(
                remote_file_id, f"timed out after {self.link_timeout_seconds}s"
            )
        except ProviderError as e:
            raise LinkResolutionFailed(remote_file_id, str(e)) from e

        return LinkResolution(url=link.url, expires_at=parse_link_expiry(link.expires_raw))

    async def list_accounts(self) -> List[StorageAccountSummary]:
        accounts = await self.store.list_storage_accounts(active_only=False)
        return [StorageAccountSummary.from_account(account) for account in accounts]

    async def register_account(
        self, account_name: str, api_token: str, storage_limit_gb: float
    ) -> StorageAccountSummary:
        """
        Add an account to the pool. New accounts start active with no usage
        recorded, so they are eligible for the very next upload.
        """
        account_name = account_name.strip()
        if not account_name:
            raise ValidationError("account_name", account_name, "must not be empty")
        if len(account_name) > MAX_ACCOUNT_NAME_LENGTH:
            raise ValidationError(
                "account_name",
                account_name,
                f"must be at most {MAX_ACCOUNT_NAME_LENGTH} characters",
            )
        if not api_token.strip():
            raise ValidationError("api_token", "***", "must not be empty")
        if storage_limit_gb <= 0:
            raise ValidationError("storage_limit_gb", storage_limit_gb, "must be positive")

        account = await self.store.create_storage_account(
            StorageAccount(
                account_name=account_name,
                api_token=api_token.strip(),
                storage_limit_gb=storage_limit_gb,
                storage_used_gb=0.0,
                is_active=True,
            )
        )
        logger.info(
            f"Registered storage account {account.account_name}",
            extra={"account_id": str(account.id), "storage_limit_gb": storage_limit_gb},
        )
        return StorageAccountSummary.from_account(account)

    async def set_account_active(self, account_id: UUID, is_active: bool) -> StorageAccountSummary:
        account = await self.store.set_storage_account_active(account_id, is_active)
        if account is None:
            raise StorageAccountNotFoundError(str(account_id))

        state = "enabled" if is_active else "disabled"
        logger.info(
            f"Storage account {account.account_name} {state}",
            extra={"account_id": str(account_id)},
        )
        return StorageAccountSummary.from_account(account)
