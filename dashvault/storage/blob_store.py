"""Immutable payload storage for dashboard snapshots.

Two backends share one small interface: ``put`` writes bytes under
``bucket/key`` and ``get`` returns them, or ``None`` when the object is gone.
Any other failure surfaces as ``StorageUnavailableError``.
"""
import asyncio
import logging
from pathlib import Path

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from dashvault.config import settings
from dashvault.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


class BlobStore:
    async def put(self, bucket: str, key: str, body: bytes, content_type: str = "application/json") -> None:
        raise NotImplementedError

    async def get(self, bucket: str, key: str) -> bytes | None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob storage; each bucket is a directory under ``base_dir``."""

    def __init__(self, base_dir: str) -> None:
        self._base_dir = Path(base_dir).resolve()

    async def put(self, bucket: str, key: str, body: bytes, content_type: str = "application/json") -> None:
        path = self._resolve(bucket, key)
        try:
            await asyncio.to_thread(self._write, path, body)
        except OSError as exc:
            logger.error("Blob write failed for %s/%s: %s", bucket, key, exc)
            raise StorageUnavailableError("Blob store write failed") from exc

    async def get(self, bucket: str, key: str) -> bytes | None:
        path = self._resolve(bucket, key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Blob read failed for %s/%s: %s", bucket, key, exc)
            raise StorageUnavailableError("Blob store read failed") from exc

    @staticmethod
    def _write(path: Path, body: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so a reader never sees a partial object
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(body)
        tmp.replace(path)

    def _resolve(self, bucket: str, key: str) -> Path:
        root = self._base_dir / bucket
        candidate = (root / key).resolve()
        if root.resolve() not in candidate.parents:
            raise ValueError("Invalid blob key.")
        return candidate


class S3BlobStore(BlobStore):
    """S3-compatible object storage (AWS S3, MinIO, LocalStack)."""

    def __init__(
        self,
        endpoint_url: str | None,
        access_key: str,
        secret_key: str,
        region: str,
    ) -> None:
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            # path-style addressing is required by MinIO and LocalStack
            config=BotoConfig(s3={"addressing_style": "path"} if endpoint_url else {}),
        )

    async def put(self, bucket: str, key: str, body: bytes, content_type: str = "application/json") -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=bucket, Key=key, Body=body, ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 put_object failed for %s/%s: %s", bucket, key, exc)
            raise StorageUnavailableError("Blob store write failed") from exc

    async def get(self, bucket: str, key: str) -> bytes | None:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_OBJECT_CODES:
                return None
            logger.error("S3 get_object failed for %s/%s: %s", bucket, key, exc)
            raise StorageUnavailableError("Blob store read failed") from exc
        except BotoCoreError as exc:
            logger.error("S3 get_object failed for %s/%s: %s", bucket, key, exc)
            raise StorageUnavailableError("Blob store read failed") from exc


def create_blob_store() -> BlobStore:
    backend = settings.BLOB_STORE_BACKEND
    if backend == "local":
        return LocalBlobStore(settings.BLOB_LOCAL_DIR)
    if backend == "s3":
        return S3BlobStore(
            endpoint_url=settings.S3_ENDPOINT,
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            region=settings.S3_REGION,
        )
    raise ValueError(f"Unsupported blob store backend: {backend}")
