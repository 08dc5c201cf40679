"""Object storage client for uploaded score sheets and signature images."""

import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, BinaryIO, Protocol
from uuid import uuid4

import boto3
from fastapi import Depends, Request

from results_api.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    """Location of an object written to storage."""

    file_url: str
    file_key: str


class StorageClient(Protocol):
    """Operations the results core needs from object storage."""

    public_url: str

    def upload_file(
        self,
        fileobj: BinaryIO,
        filename: str,
        content_type: str | None,
        folder: str,
        metadata: dict[str, str] | None = None,
    ) -> StoredFile: ...

    def delete_file(self, file_key: str) -> None: ...


def build_object_key(folder: str, filename: str) -> str:
    """Unique key under ``folder`` that keeps the original extension."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    safe_name = "".join(c if c.isalnum() or c in "._-" else "_" for c in filename)
    return f"{folder.strip('/')}/{stamp}-{uuid4().hex[:12]}-{safe_name}"


def key_from_url(url: str | None, public_url: str) -> str | None:
    """Extract the object key from a public URL we issued, else None."""
    if not url or not public_url:
        return None
    prefix = public_url.rstrip("/") + "/"
    if not url.startswith(prefix):
        return None
    return url[len(prefix):] or None


class S3StorageClient:
    """S3-compatible storage (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self.bucket = settings.STORAGE_BUCKET
        self.public_url = settings.STORAGE_PUBLIC_URL.rstrip("/")
        self._client = client

    @property
    def client(self):
        # Created on first use so the app can start without storage credentials
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.settings.STORAGE_ENDPOINT_URL,
                aws_access_key_id=self.settings.STORAGE_ACCESS_KEY_ID,
                aws_secret_access_key=self.settings.STORAGE_SECRET_ACCESS_KEY,
                region_name=self.settings.STORAGE_REGION,
            )
        return self._client

    def upload_file(
        self,
        fileobj: BinaryIO,
        filename: str,
        content_type: str | None,
        folder: str,
        metadata: dict[str, str] | None = None,
    ) -> StoredFile:
        key = build_object_key(folder, filename)
        extra_args: dict = {
            "ContentType": content_type
            or mimetypes.guess_type(filename)[0]
            or "application/octet-stream",
        }
        if metadata:
            extra_args["Metadata"] = {k: str(v) for k, v in metadata.items()}

        self.client.upload_fileobj(fileobj, self.bucket, key, ExtraArgs=extra_args)
        logger.info(f"Uploaded {filename} to storage as {key}")
        return StoredFile(file_url=f"{self.public_url}/{key}", file_key=key)

    def delete_file(self, file_key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=file_key)
        logger.info(f"Deleted {file_key} from storage")


def get_storage(request: Request) -> StorageClient:
    """Storage client configured on the running application."""
    return request.app.state.storage


Storage = Annotated[StorageClient, Depends(get_storage)]
