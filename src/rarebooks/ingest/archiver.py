"""Download a lot's images into one zip archive."""

from __future__ import annotations

import asyncio
import logging
import re
import tempfile
import zipfile
from functools import partial
from pathlib import Path, PurePosixPath
from urllib.parse import urljoin, urlsplit

import httpx

from ..config import settings
from ..marketplace.session import SessionClient
from ..storage import ArchiveStorage

logger = logging.getLogger(__name__)

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_BAD_REQUEST = 400


class ImageDownloadError(Exception):
    """An image URL answered with a non-success status."""

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Image download failed (HTTP {status_code}): {url}")


def sanitize_filename(url: str, fallback: str) -> str:
    """Filesystem-safe name from the URL path; query string and fragment dropped."""
    name = PurePosixPath(urlsplit(url).path).name
    name = _INVALID_FILENAME_CHARS.sub("_", name).strip(" .")
    return name or fallback


def _zip_directory(source: Path, archive_path: Path) -> int:
    count = 0
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(source.rglob("*")):
            if path.is_file():
                zf.write(path, path.relative_to(source).as_posix())
                count += 1
    return count


class ImageArchiver:
    """Fetch images with a small concurrency pool and package them per lot.

    Downloads use short-lived clients that borrow the marketplace session's
    cookies, independent of the session's own single-request gate.
    """

    def __init__(
        self,
        session: SessionClient,
        storage: ArchiveStorage,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session = session
        self.storage = storage
        self._transport = transport
        self._semaphore = asyncio.Semaphore(settings.image_download_concurrency)

    async def archive(
        self, lot_id: int, image_urls: list[str], thumbnail_urls: list[str],
    ) -> str | None:
        """Build and store the archive. Returns its location, or None if nothing was stored."""
        if not image_urls and not thumbnail_urls:
            return None

        logger.info(
            "Archiving %d images and %d thumbnails for lot %s",
            len(image_urls), len(thumbnail_urls), lot_id,
        )
        with tempfile.TemporaryDirectory(prefix=f"lot_{lot_id}_") as scratch:
            scratch_dir = Path(scratch)
            content_dir = scratch_dir / "content"
            jobs = self._plan(content_dir / "images", image_urls)
            jobs += self._plan(content_dir / "thumbnails", thumbnail_urls)

            results = await asyncio.gather(
                *(self._download_to(url, target, lot_id) for url, target in jobs)
            )
            saved = sum(results)
            failed = len(jobs) - saved
            if failed:
                logger.warning(
                    "Lot %s: %d of %d images failed, archiving the rest", lot_id, failed, len(jobs),
                )
            if not saved:
                logger.warning("Lot %s: no images could be downloaded, archive skipped", lot_id)
                return None

            archive_path = scratch_dir / f"lot_{lot_id}.zip"
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, partial(_zip_directory, content_dir, archive_path))
            return await self.storage.store(lot_id, archive_path)

    @staticmethod
    def _plan(folder: Path, urls: list[str]) -> list[tuple[str, Path]]:
        folder.mkdir(parents=True, exist_ok=True)
        jobs: list[tuple[str, Path]] = []
        used: set[str] = set()
        for i, url in enumerate(urls):
            absolute = urljoin(settings.marketplace_base_url + "/", url)
            name = sanitize_filename(absolute, f"{i:02d}.jpg")
            if name in used:
                name = f"{i:02d}_{name}"
            used.add(name)
            jobs.append((absolute, folder / name))
        return jobs

    async def _download_to(self, url: str, target: Path, lot_id: int) -> bool:
        try:
            content = await self._download_with_retry(url)
        except Exception as e:
            logger.error("Lot %s: giving up on %s: %s", lot_id, url, e)
            return False
        target.write_bytes(content)
        logger.debug("Lot %s: saved %s", lot_id, target.name)
        return True

    async def _download_with_retry(self, url: str) -> bytes:
        attempts = settings.image_download_attempts
        delay = settings.image_retry_base_delay
        for attempt in range(1, attempts + 1):
            try:
                return await self._download(url)
            except ImageDownloadError as e:
                if e.status_code == _BAD_REQUEST or attempt == attempts:
                    raise
                logger.warning("Attempt %d/%d for %s: %s", attempt, attempts, url, e)
            except (httpx.TransportError, OSError) as e:
                if attempt == attempts:
                    raise
                logger.warning("Attempt %d/%d for %s: %s", attempt, attempts, url, e)
            await self.session.refresh_cookies()
            await asyncio.sleep(delay)
            delay *= 2
        raise AssertionError("unreachable")

    async def _download(self, url: str) -> bytes:
        async with self._semaphore:
            async with httpx.AsyncClient(
                cookies=self.session.cookies,
                headers={
                    "User-Agent": settings.scraper_user_agent,
                    "Accept": "image/jpeg,image/*;q=0.8",
                    "Referer": settings.marketplace_base_url,
                },
                timeout=settings.image_request_timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
                if resp.is_error:
                    raise ImageDownloadError(url, resp.status_code)
                return resp.content
