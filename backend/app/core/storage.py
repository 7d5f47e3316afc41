"""Object storage supporting local filesystem and S3-compatible backends.

Objects are addressed by opaque storage IDs: a random hex token plus the
file extension of the stored media type (``3f9c...e1.ts``). The extension
lets the read path pick the right content type without a metadata lookup.
"""

import mimetypes
import os
import re
import shutil
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from app.core.config import settings


HLS_PLAYLIST_TYPE = "application/vnd.apple.mpegurl"
MPEG_TS_TYPE = "video/mp2t"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
STREAM_CHUNK_SIZE = 64 * 1024

# Explicit table; the platform mimetypes database maps .ts inconsistently.
MEDIA_TYPES = {
    ".m3u8": HLS_PLAYLIST_TYPE,
    ".ts": MPEG_TS_TYPE,
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".avi": "video/x-msvideo",
}

_STORAGE_ID_RE = re.compile(r"^[0-9a-f]{32}(\.[a-z0-9]{1,8})?$")


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"


def extension_for(content_type: str) -> str:
    """Return the file extension used for a content type ('' if unknown)."""
    for ext, media_type in MEDIA_TYPES.items():
        if media_type == content_type:
            return ext
    return mimetypes.guess_extension(content_type) or ""


def content_type_for(name: str) -> str:
    """Return the content type implied by a storage ID or file name."""
    ext = os.path.splitext(name)[1].lower()
    if ext in MEDIA_TYPES:
        return MEDIA_TYPES[ext]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_CONTENT_TYPE


def is_valid_storage_id(storage_id: str) -> bool:
    """Check that a storage ID has the shape this module generates."""
    return bool(storage_id) and _STORAGE_ID_RE.match(storage_id) is not None


def new_storage_id(content_type: str = DEFAULT_CONTENT_TYPE) -> str:
    """Generate a fresh storage ID for an object of the given type."""
    return f"{uuid.uuid4().hex}{extension_for(content_type)}"


def iter_object(stream: BinaryIO, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield an opened object in chunks, closing it when exhausted."""
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def put_bytes(self, key: str, data: bytes, content_type: str) -> StorageResult:
        """Store raw bytes under a key."""

    @abstractmethod
    def put_file(self, key: str, file_path: str, content_type: str) -> StorageResult:
        """Store a local file under a key."""

    @abstractmethod
    def read(self, key: str) -> Optional[bytes]:
        """Read an object, or None if it does not exist."""

    @abstractmethod
    def open(self, key: str) -> Optional[BinaryIO]:
        """Open an object for streaming reads, or None if it does not exist."""

    @abstractmethod
    def download(self, key: str, destination: str) -> bool:
        """Copy an object to a local path."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an object."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if an object exists."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def put_bytes(self, key: str, data: bytes, content_type: str) -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so readers never observe a partial object
            tmp_path = dest_path.with_name(dest_path.name + ".part")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, dest_path)
            return StorageResult(success=True, key=key, file_size=len(data))
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def put_file(self, key: str, file_path: str, content_type: str) -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = dest_path.with_name(dest_path.name + ".part")
            shutil.copyfile(file_path, tmp_path)
            os.replace(tmp_path, dest_path)
            return StorageResult(
                success=True,
                key=key,
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def read(self, key: str) -> Optional[bytes]:
        path = self._get_full_path(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def open(self, key: str) -> Optional[BinaryIO]:
        path = self._get_full_path(key)
        if not path.is_file():
            return None
        return path.open("rb")

    def download(self, key: str, destination: str) -> bool:
        try:
            src_path = self._get_full_path(key)
            if src_path.exists():
                shutil.copyfile(src_path, destination)
                return True
            return False
        except OSError:
            return False

    def delete(self, key: str) -> bool:
        try:
            file_path = self._get_full_path(key)
            if file_path.exists():
                file_path.unlink()
                return True
            return False
        except OSError:
            return False

    def exists(self, key: str) -> bool:
        return self._get_full_path(key).is_file()


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key,
                "aws_secret_access_key": self.config.secret_key,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def put_bytes(self, key: str, data: bytes, content_type: str) -> StorageResult:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            return StorageResult(
                success=True,
                key=key,
                file_size=len(data),
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def put_file(self, key: str, file_path: str, content_type: str) -> StorageResult:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            file_size = os.path.getsize(file_path)
            with open(file_path, "rb") as f:
                response = self._get_client().put_object(
                    Bucket=self.config.bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type,
                )
            return StorageResult(
                success=True,
                key=key,
                file_size=file_size,
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def open(self, key: str) -> Optional[BinaryIO]:
        from botocore.exceptions import ClientError

        try:
            response = self._get_client().get_object(Bucket=self.config.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        # botocore StreamingBody over the open HTTP response
        return response["Body"]

    def read(self, key: str) -> Optional[bytes]:
        body = self.open(key)
        if body is None:
            return None
        try:
            return body.read()
        finally:
            body.close()

    def download(self, key: str, destination: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().download_file(self.config.bucket, key, destination)
            return True
        except (BotoCoreError, ClientError):
            return False

    def delete(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError):
            return False

    def exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError):
            return False


class Storage:
    """Object storage addressed by storage ID.

    Automatically selects the appropriate backend based on configuration.
    """

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        if config is None:
            config = StorageConfig(
                backend=settings.STORAGE_BACKEND,
                bucket=settings.STORAGE_BUCKET,
                region=settings.STORAGE_REGION,
                access_key=settings.STORAGE_ACCESS_KEY,
                secret_key=settings.STORAGE_SECRET_KEY,
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                use_ssl=settings.STORAGE_USE_SSL,
                local_path=settings.LOCAL_STORAGE_PATH,
            )

        self.config = config
        self._backend = self._create_backend(config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def put(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        """Store bytes under a fresh storage ID (returned as ``result.key``)."""
        return self._backend.put_bytes(new_storage_id(content_type), data, content_type)

    def put_file(self, file_path: str, content_type: Optional[str] = None) -> StorageResult:
        """Store a local file under a fresh storage ID."""
        content_type = content_type or content_type_for(file_path)
        return self._backend.put_file(new_storage_id(content_type), file_path, content_type)

    def get(self, storage_id: str) -> Optional[bytes]:
        """Read the bytes behind a storage ID, or None if unknown."""
        if not is_valid_storage_id(storage_id):
            return None
        return self._backend.read(storage_id)

    def open(self, storage_id: str) -> Optional[BinaryIO]:
        """Open the object behind a storage ID for streaming, or None if unknown."""
        if not is_valid_storage_id(storage_id):
            return None
        return self._backend.open(storage_id)

    def download(self, storage_id: str, destination: str) -> bool:
        if not is_valid_storage_id(storage_id):
            return False
        return self._backend.download(storage_id, destination)

    def delete(self, storage_id: str) -> bool:
        if not is_valid_storage_id(storage_id):
            return False
        return self._backend.delete(storage_id)

    def exists(self, storage_id: str) -> bool:
        return is_valid_storage_id(storage_id) and self._backend.exists(storage_id)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()
