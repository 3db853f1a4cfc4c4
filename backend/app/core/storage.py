"""Object storage for source staging and rendition publishing.

Two backends: the local filesystem and S3 (or any S3-compatible service
such as MinIO). Uploads never raise; they report failure through
``StorageResult`` so callers decide whether a failed upload is fatal.
"""

import mimetypes
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings

# Source videos can be large; switch to multipart above 64 MiB
MULTIPART_THRESHOLD = 64 * 1024 * 1024

HLS_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}


@dataclass
class StorageResult:
    """Outcome of one upload.

    ``reference`` is the canonical location handed to other services
    (an ``s3://`` URI or an absolute path); ``url`` is the public one.
    """
    success: bool
    key: str
    url: str = ""
    reference: str = ""
    file_size: int = 0
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./uploads"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
        )

    @property
    def cdn_base(self) -> Optional[str]:
        if self.cdn_enabled and self.cdn_domain:
            return f"https://{self.cdn_domain}"
        return None


def guess_content_type(path: str) -> str:
    """MIME type for an upload, with HLS playlists and segments special-cased."""
    suffix = Path(path).suffix.lower()
    if suffix in HLS_CONTENT_TYPES:
        return HLS_CONTENT_TYPES[suffix]
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


class StorageBackend(ABC):
    is_remote: bool = False

    def __init__(self, config: StorageConfig):
        self.config = config

    @abstractmethod
    def upload(self, file_path: str, key: str, content_type: str) -> StorageResult:
        pass

    @abstractmethod
    def get_url(self, key: str) -> str:
        pass

    def upload_directory(self, directory: str, prefix: str) -> list[StorageResult]:
        """Upload every file under ``directory`` as ``prefix/<relative path>``.

        Stops at the first failure; the failed result is the last one returned.
        """
        base = Path(directory)
        results = []
        for path in sorted(p for p in base.rglob("*") if p.is_file()):
            relative = path.relative_to(base).as_posix()
            result = self.upload(
                str(path), f"{prefix.rstrip('/')}/{relative}", guess_content_type(relative)
            )
            results.append(result)
            if not result.success:
                break
        return results


class LocalStorage(StorageBackend):
    """Copies files under ``config.local_path``."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self.root = Path(config.local_path)
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(self, file_path: str, key: str, content_type: str) -> StorageResult:
        target = self.root / key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if Path(file_path).resolve() != target.resolve():
                shutil.copy2(file_path, target)
            size = target.stat().st_size
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

        return StorageResult(
            success=True,
            key=key,
            url=self.get_url(key),
            reference=str(target.absolute()),
            file_size=size,
        )

    def get_url(self, key: str) -> str:
        base = self.config.cdn_base
        if base:
            return f"{base}/{key}"
        return (self.root / key).absolute().as_uri()


class S3Storage(StorageBackend):
    """S3 and S3-compatible buckets through boto3 managed transfers."""

    is_remote = True

    def __init__(self, config: StorageConfig, client=None):
        super().__init__(config)
        self._client = client
        self._transfer_config = TransferConfig(multipart_threshold=MULTIPART_THRESHOLD)

    def _get_client(self):
        if self._client is None:
            kwargs = {"region_name": self.config.region or "us-east-1"}
            if self.config.access_key and self.config.secret_key:
                kwargs["aws_access_key_id"] = self.config.access_key
                kwargs["aws_secret_access_key"] = self.config.secret_key
            if self.config.endpoint_url:
                # MinIO and friends need path-style addressing
                kwargs["endpoint_url"] = self.config.endpoint_url
                kwargs["use_ssl"] = self.config.use_ssl
                kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def upload(self, file_path: str, key: str, content_type: str) -> StorageResult:
        try:
            size = Path(file_path).stat().st_size
            self._get_client().upload_file(
                file_path,
                self.config.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=self._transfer_config,
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

        return StorageResult(
            success=True,
            key=key,
            url=self.get_url(key),
            reference=f"s3://{self.config.bucket}/{key}",
            file_size=size,
        )

    def get_url(self, key: str) -> str:
        base = self.config.cdn_base
        if base:
            return f"{base}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"


BACKENDS = {
    "local": LocalStorage,
    "s3": S3Storage,
    "minio": S3Storage,
}


class Storage:
    """Facade over the configured backend."""

    _instance: Optional["Storage"] = None

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        backend: Optional[StorageBackend] = None,
    ):
        self.config = config or StorageConfig.from_settings()
        if backend is None:
            backend_cls = BACKENDS.get(self.config.backend.lower())
            if backend_cls is None:
                raise ValueError(f"Unsupported storage backend: {self.config.backend}")
            backend = backend_cls(self.config)
        self._backend = backend

    @classmethod
    def get_instance(cls) -> "Storage":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def is_remote(self) -> bool:
        return self._backend.is_remote

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        return self._backend.upload(file_path, key, content_type)

    def upload_directory(self, directory: str, prefix: str) -> list[StorageResult]:
        return self._backend.upload_directory(directory, prefix)


def get_storage() -> Storage:
    """Storage configured from settings, shared per process."""
    return Storage.get_instance()
