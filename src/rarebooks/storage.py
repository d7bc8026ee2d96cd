"""Where packaged image archives end up: local disk or S3-compatible storage."""

from __future__ import annotations

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Any

from .config import Settings

logger = logging.getLogger(__name__)

ARCHIVE_KEY_TEMPLATE = "_compressed_images/{}.zip"


class ArchiveStorage(ABC):
    """Destination for one zip per lot."""

    @abstractmethod
    async def store(self, lot_id: int, archive_path: Path) -> str | None:
        """Persist the archive and return its location, or None on failure."""
        ...


class LocalArchiveStorage(ArchiveStorage):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    async def store(self, lot_id: int, archive_path: Path) -> str | None:
        target = self.root / f"{lot_id}.zip"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(archive_path, target)
        except OSError as e:
            logger.warning("Failed to store archive for lot %s at %s: %s", lot_id, target, e)
            return None
        logger.info("Local archive for lot %s created: %s", lot_id, target)
        return str(target)


class ObjectArchiveStorage(ArchiveStorage):
    """Uploads archives to an S3 bucket (Yandex Object Storage in production)."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str,
        region: str,
        access_key: str,
        secret_key: str,
    ) -> None:
        self.bucket = bucket
        self._client_kwargs = {
            "endpoint_url": endpoint_url,
            "region_name": region,
            "aws_access_key_id": access_key,
            "aws_secret_access_key": secret_key,
        }
        self._s3: Any = None

    def _get_s3_client(self):
        if self._s3 is None:
            import boto3

            self._s3 = boto3.client("s3", **self._client_kwargs)
        return self._s3

    def _upload(self, archive_path: Path, key: str) -> None:
        with archive_path.open("rb") as fh:
            self._get_s3_client().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=fh,
                ContentType="application/zip",
            )

    async def store(self, lot_id: int, archive_path: Path) -> str | None:
        key = ARCHIVE_KEY_TEMPLATE.format(lot_id)
        loop = asyncio.get_running_loop()
        try:
            # boto3 is blocking
            await loop.run_in_executor(None, partial(self._upload, archive_path, key))
        except Exception as e:
            logger.warning("Failed to upload archive for lot %s as %s: %s", lot_id, key, e)
            return None
        logger.info("Object storage archive for lot %s uploaded: %s", lot_id, key)
        return key


def build_archive_storage(cfg: Settings) -> ArchiveStorage:
    """Pick the backend once, at start-up."""
    if cfg.use_local_files:
        return LocalArchiveStorage(cfg.local_archive_path)
    if not cfg.s3_enabled:
        raise ValueError(
            "use_local_files is off but S3 storage is not configured "
            "(s3_bucket, s3_access_key, s3_secret_key)"
        )
    return ObjectArchiveStorage(
        cfg.s3_bucket,
        endpoint_url=cfg.s3_endpoint_url,
        region=cfg.s3_region,
        access_key=cfg.s3_access_key,
        secret_key=cfg.s3_secret_key,
    )
