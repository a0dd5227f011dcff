"""Object storage collaborator: user-namespaced file access and signed URLs."""

import logging
import re
from typing import Protocol
from urllib.parse import quote
from uuid import UUID

import httpx

from backend.app.config import Settings
from backend.app.errors import Forbidden, InternalError, SourceNotFound, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def validate_user_path(path: str, user_id: UUID) -> str:
    """Check a caller-supplied storage path before granting access.

    Paths are namespaced by owning user id: ``<user_id>/<name>``.

    Raises:
        ValidationError: On empty, absolute or traversal paths
        Forbidden: If the path is outside the caller's namespace
    """
    if not isinstance(path, str) or not path.strip():
        raise ValidationError("Storage path is required")
    if ".." in path or path.startswith(("/", "\\")) or "\\" in path or "\x00" in path:
        raise ValidationError("Invalid path detected")
    if not path.startswith(f"{user_id}/") or path == f"{user_id}/":
        raise Forbidden("You can only access your own files")
    return path


def upload_path(user_id: UUID, filename: str, timestamp: int) -> str:
    """Storage path for a new upload: ``<user_id>/<timestamp>_<safe name>``."""
    safe = re.sub(r"\.{2,}", ".", _UNSAFE_NAME.sub("_", filename)).strip("._") or "upload"
    return f"{user_id}/{timestamp}_{safe[:200]}"


class ObjectStorage(Protocol):
    """Protocol for object storage backends."""

    async def download(self, path: str) -> bytes:
        """Download object bytes.

        Raises:
            SourceNotFound: If the object does not exist
        """
        ...

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        ...

    async def remove(self, paths: list[str]) -> None:
        ...

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        """Sign one path.

        Raises:
            SourceNotFound: If the object does not exist
        """
        ...

    async def create_signed_urls(self, paths: list[str], ttl_seconds: int) -> list[str]:
        """Sign many paths at once; an unsignable path yields an empty string."""
        ...


class InMemoryStorage:
    """In-memory object storage for tests and local development."""

    def __init__(self, bucket: str = "lecture-materials") -> None:
        self.bucket = bucket
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise SourceNotFound()
        return self.objects[path][0]

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.objects[path] = (data, content_type)

    async def remove(self, paths: list[str]) -> None:
        for path in paths:
            self.objects.pop(path, None)

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        if path not in self.objects:
            raise SourceNotFound()
        return f"memory://{self.bucket}/{quote(path)}?expires_in={ttl_seconds}"

    async def create_signed_urls(self, paths: list[str], ttl_seconds: int) -> list[str]:
        return [
            f"memory://{self.bucket}/{quote(p)}?expires_in={ttl_seconds}" if p in self.objects else ""
            for p in paths
        ]


class SupabaseStorage:
    """Supabase Storage REST client (service role)."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = base_url.rstrip("/") + "/storage/v1"
        self._bucket = bucket
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {service_key}", "apikey": service_key},
        )

    def _object_url(self, path: str) -> str:
        return f"{self._base}/object/{self._bucket}/{quote(path)}"

    async def download(self, path: str) -> bytes:
        try:
            response = await self._client.get(self._object_url(path))
        except httpx.HTTPError as e:
            logger.error(f"Storage download failed for {path}: {e}")
            raise InternalError("Storage unavailable") from e

        # Supabase reports missing objects as 400 or 404 depending on version
        if response.status_code in (400, 404):
            raise SourceNotFound()
        if response.is_error:
            logger.error(f"Storage download for {path} returned {response.status_code}")
            raise InternalError("Storage unavailable")
        return response.content

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        try:
            response = await self._client.post(
                self._object_url(path),
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Storage upload failed for {path}: {e}")
            raise InternalError("Failed to upload file to storage") from e

    async def remove(self, paths: list[str]) -> None:
        if not paths:
            return
        try:
            response = await self._client.request(
                "DELETE", f"{self._base}/object/{self._bucket}", json={"prefixes": paths}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Storage remove failed for {len(paths)} path(s): {e}")
            raise InternalError("Failed to remove file from storage") from e

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        try:
            response = await self._client.post(
                f"{self._base}/object/sign/{self._bucket}/{quote(path)}",
                json={"expiresIn": ttl_seconds},
            )
        except httpx.HTTPError as e:
            raise InternalError("Storage unavailable") from e

        if response.status_code in (400, 404):
            raise SourceNotFound()
        if response.is_error:
            raise InternalError("Storage unavailable")
        return self._base + response.json()["signedURL"]

    async def create_signed_urls(self, paths: list[str], ttl_seconds: int) -> list[str]:
        try:
            response = await self._client.post(
                f"{self._base}/object/sign/{self._bucket}",
                json={"expiresIn": ttl_seconds, "paths": paths},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Batch signed URL error: {e}")
            return ["" for _ in paths]

        signed = {item.get("path"): item.get("signedURL") for item in response.json()}
        return [self._base + signed[p] if signed.get(p) else "" for p in paths]

    async def aclose(self) -> None:
        await self._client.aclose()


def get_storage(settings: Settings) -> ObjectStorage:
    """Factory: Supabase storage when configured, in-memory otherwise."""
    key = settings.supabase_service_role_key
    if settings.supabase_url and key and key.get_secret_value():
        logger.info(f"Using Supabase storage bucket {settings.storage_bucket}")
        return SupabaseStorage(
            settings.supabase_url, key.get_secret_value(), settings.storage_bucket
        )

    logger.warning("Supabase storage not configured, using in-memory storage")
    return InMemoryStorage(bucket=settings.storage_bucket)
