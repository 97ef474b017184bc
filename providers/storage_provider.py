"""
Remote Storage Provider Classes

The backing files of the catalog live at a third-party storage service. The
storage rotator only needs two things from it: accept an upload for a given
account credential, and hand out a time-limited direct link to a stored file.

`RemoteStorageProvider` is that contract; `PCloudStorageProvider` implements it
against the pCloud HTTP API with aiohttp.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised by providers when the remote API fails or answers with an error"""


@dataclass(frozen=True)
class RemoteFile:
    file_id: str
    content_hash: str


@dataclass(frozen=True)
class RemoteLink:
    url: str
    # Expiry exactly as the provider sent it; parsing is the caller's concern
    expires_raw: Optional[str]


class RemoteStorageProvider(ABC):
    """Abstract base class for remote storage providers"""

    @abstractmethod
    async def upload_file(self, api_token: str, data: bytes, filename: str) -> RemoteFile:
        """Upload bytes under `filename` for the account identified by `api_token`"""

    @abstractmethod
    async def get_file_link(self, api_token: str, file_id: str) -> RemoteLink:
        """Issue a time-limited direct link to a stored file"""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Source identifier for this provider"""

    async def close(self) -> None:
        """Release network resources"""


class PCloudStorageProvider(RemoteStorageProvider):
    """pCloud HTTP API provider"""

    def __init__(
        self,
        base_url: str = "https://api.pcloud.com",
        session: Optional[aiohttp.ClientSession] = None,
        upload_timeout_seconds: float = 300.0,
        request_timeout_seconds: float = 30.0,
        folder_id: int = 0,
    ):
        self.base_url = base_url.rstrip("/")
        self.folder_id = folder_id
        self.upload_timeout = aiohttp.ClientTimeout(total=upload_timeout_seconds)
        self.request_timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._session = session
        self._owns_session = session is None

    @property
    def source_name(self) -> str:
        return "pcloud"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def upload_file(self, api_token: str, data: bytes, filename: str) -> RemoteFile:
        form = aiohttp.FormData()
        form.add_field(
            "file", data, filename=filename, content_type="application/octet-stream"
        )
        params = {"auth": api_token, "folderid": str(self.folder_id)}

        payload = await self._call(
            "uploadfile", method="POST", params=params, data=form, timeout=self.upload_timeout
        )

        metadata = payload.get("metadata") or []
        if not metadata:
            raise ProviderError("no file metadata returned from pCloud")

        first = metadata[0]
        file_id = first.get("fileid")
        if file_id is None:
            raise ProviderError("no file id returned from pCloud")

        logger.info(
            f"Uploaded {filename} to pCloud as file {file_id}",
            extra={"size": first.get("size")},
        )
        return RemoteFile(file_id=str(file_id), content_hash=str(first.get("hash", "")))

    async def get_file_link(self, api_token: str, file_id: str) -> RemoteLink:
        params = {"auth": api_token, "fileid": str(file_id)}
        payload = await self._call("getfilelink", params=params, timeout=self.request_timeout)

        hosts = payload.get("hosts") or []
        if not hosts:
            raise ProviderError("no hosts returned from pCloud")

        return RemoteLink(
            url=f"https://{hosts[0]}{payload.get('path', '')}",
            expires_raw=payload.get("expires"),
        )

    async def _call(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[dict] = None,
        data=None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ) -> dict:
        """Call one API method and return its JSON body; non-zero `result` is an error"""
        url = f"{self.base_url}/{endpoint}"
        session = self._get_session()
        try:
            async with session.request(
                method, url, params=params, data=data, timeout=timeout
            ) as response:
                if response.status != 200:
                    raise ProviderError(f"pCloud {endpoint} returned HTTP {response.status}")
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ProviderError(f"pCloud {endpoint} request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"pCloud {endpoint} returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ProviderError(f"pCloud {endpoint} returned an unexpected payload")
        if payload.get("result", 0) != 0:
            raise ProviderError(
                f"pCloud {endpoint} failed: {payload.get('error', 'unknown error')}"
            )
        return payload

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
