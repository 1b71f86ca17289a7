"""Image asset storage backed by the local filesystem or S3.

Listings refer to images by an opaque reference (the storage key). The
reference is turned into a fetchable URL only when a listing leaves the
service. ``store`` validates before writing anything; ``delete`` never
raises, because an orphaned blob is harmless while a blocked delete is not.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from marketplace.config import ALLOWED_IMAGE_TYPES, Settings
from marketplace.exceptions import DependencyError, ValidationError

logger = logging.getLogger(__name__)

KEY_PREFIX = "images"


class AssetStore(ABC):
    """Common validation and key generation for image backends."""

    def __init__(
        self,
        max_bytes: int = 5 * 1024 * 1024,
        allowed_types: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self.max_bytes = max_bytes
        self.allowed_types = allowed_types or ALLOWED_IMAGE_TYPES

    def validate(self, data: bytes, content_type: str, filename: str | None = None) -> str:
        """Check type and size, returning the extension to store under."""
        content_type = (content_type or "").split(";")[0].strip().lower()
        extensions = self.allowed_types.get(content_type)
        if extensions is None:
            raise ValidationError(
                "Image must be one of: " + ", ".join(sorted(self.allowed_types))
            )
        if filename:
            suffix = PurePosixPath(filename).suffix.lower()
            if suffix and suffix not in extensions:
                raise ValidationError(f"File extension {suffix} does not match {content_type}")
        if len(data) > self.max_bytes:
            raise ValidationError(f"Image exceeds the {self.max_bytes // (1024 * 1024)} MB limit")
        if not data:
            raise ValidationError("Image file is empty")
        return extensions[0]

    def store(self, data: bytes, content_type: str, filename: str | None = None) -> str:
        """Persist an image and return its reference."""
        extension = self.validate(data, content_type, filename)
        reference = f"{KEY_PREFIX}/{uuid.uuid4().hex}{extension}"
        try:
            self._write(reference, data, content_type)
        except (OSError, BotoCoreError, ClientError) as e:
            logger.error(f"Failed to store image {reference}: {e}")
            raise DependencyError("Image storage is unavailable") from e
        logger.info(f"Stored image {reference} ({len(data)} bytes)")
        return reference

    def delete(self, reference: str) -> None:
        """Remove an image. Failures are logged, never raised."""
        try:
            self._remove(reference)
        except (OSError, ValueError, BotoCoreError, ClientError) as e:
            logger.warning(f"Could not delete image {reference}: {e}")
            return
        logger.info(f"Deleted image {reference}")

    @abstractmethod
    def resolve_url(self, reference: str) -> str:
        ...

    @abstractmethod
    def exists(self, reference: str) -> bool:
        ...

    @abstractmethod
    def read(self, reference: str) -> bytes:
        ...

    @abstractmethod
    def _write(self, reference: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    def _remove(self, reference: str) -> None:
        ...


class LocalAssetStore(AssetStore):
    """Images on disk under ``root``, served by the app at ``/uploads``."""

    def __init__(self, root: str | Path, base_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")
        (self.root / KEY_PREFIX).mkdir(parents=True, exist_ok=True)

    def _path(self, reference: str) -> Path:
        path = (self.root / reference).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Reference escapes the upload directory: {reference}")
        return path

    def resolve_url(self, reference: str) -> str:
        return f"{self.base_url}/uploads/{reference}"

    def exists(self, reference: str) -> bool:
        try:
            return self._path(reference).is_file()
        except ValueError:
            return False

    def read(self, reference: str) -> bytes:
        return self._path(reference).read_bytes()

    def _write(self, reference: str, data: bytes, content_type: str) -> None:
        path = self._path(reference)
        tmp = path.with_suffix(path.suffix + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)

    def _remove(self, reference: str) -> None:
        path = self._path(reference)
        if not path.exists():
            logger.info(f"Image {reference} already absent")
            return
        path.unlink()


class S3AssetStore(AssetStore):
    """Images as objects in an S3 bucket."""

    def __init__(self, bucket: str, client: Any, public_base_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.bucket = bucket
        self.client = client
        self.public_base_url = public_base_url.rstrip("/")

    def resolve_url(self, reference: str) -> str:
        return f"{self.public_base_url}/{reference}"

    def exists(self, reference: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=reference)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def read(self, reference: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket, Key=reference)
        return response["Body"].read()

    def _write(self, reference: str, data: bytes, content_type: str) -> None:
        self.client.put_object(
            Bucket=self.bucket, Key=reference, Body=data, ContentType=content_type
        )

    def _remove(self, reference: str) -> None:
        # S3 reports success for keys that do not exist
        self.client.delete_object(Bucket=self.bucket, Key=reference)


def build_asset_store(settings: Settings) -> AssetStore:
    """Create the asset store selected by ``ASSET_BACKEND``."""
    limits = {"max_bytes": settings.max_image_bytes}
    if settings.asset_backend == "s3":
        client = boto3.client(
            "s3",
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
        )
        return S3AssetStore(
            settings.s3_bucket,
            client,
            settings.resolved_s3_base_url,
            **limits,
        )
    return LocalAssetStore(settings.upload_dir, settings.base_url, **limits)
