"""Detect image-URL columns in a tabular preview and resolve them to thumbnails."""
import base64
import hashlib
import queue
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import requests

from config import (
    IMAGE_BATCH_PAUSE_SECONDS,
    IMAGE_BATCH_SIZE,
    IMAGE_CACHE_TTL_SECONDS,
    IMAGE_FETCH_MAX_BYTES,
    IMAGE_FETCH_TIMEOUT_SECONDS,
)
from logger import get_logger
from models.common_models import ImageCell, ImageColumn, TabularPreview
from services.errors import ImageProcessingFailed, ImageResolutionError
from services.image_service import cell_thumbnail
from services.staging_store import StagingStore

logger = get_logger(__name__)

IMAGE_URL_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
IMAGE_URL_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp|svg)$", re.IGNORECASE)
IMAGE_HEADER_KEYWORDS = ("image", "img", "photo", "picture", "url")

DETECTION_SAMPLE_ROWS = 5
DETECTION_THRESHOLD = 0.6

USER_AGENT = "Mozilla/5.0 (Dataset Preview Bot)"

# (url, timeout) -> raw image bytes
Fetcher = Callable[[str, float], bytes]


def is_image_url(value) -> bool:
    if not isinstance(value, str) or not IMAGE_URL_SCHEME.match(value):
        return False
    return bool(IMAGE_URL_EXTENSION.search(urlsplit(value).path))


def detect_image_columns(headers: Sequence[str], rows: Sequence[Sequence]) -> List[ImageColumn]:
    """
    Flag columns that hold images: more than 60% of the first 5 rows are image URLs,
    or the header itself names an image/url.
    """
    sample = rows[:DETECTION_SAMPLE_ROWS]
    columns = []

    for index, header in enumerate(headers):
        hits = sum(1 for row in sample if index < len(row) and is_image_url(row[index]))
        confidence = hits / len(sample) if sample else 0.0
        name_hint = any(k in (header or "").lower() for k in IMAGE_HEADER_KEYWORDS)

        if confidence > DETECTION_THRESHOLD or name_hint:
            columns.append(ImageColumn(index=index, name=header, confidence=confidence))

    return columns


def image_cache_key(upload_id: str, url: str) -> str:
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()
    return f"imagecache:{upload_id}:{digest}"


def fetch_image(url: str, timeout: float = IMAGE_FETCH_TIMEOUT_SECONDS) -> bytes:
    """Download an image with a hard overall deadline and a size cap."""
    deadline = time.monotonic() + timeout
    try:
        with requests.get(url, timeout=timeout, stream=True, headers={"User-Agent": USER_AGENT}) as response:
            if not response.ok:
                raise ImageResolutionError(f"HTTP {response.status_code}")
            buf = bytearray()
            for block in response.iter_content(chunk_size=64 * 1024):
                buf.extend(block)
                if len(buf) > IMAGE_FETCH_MAX_BYTES:
                    raise ImageResolutionError("Image exceeds download size limit")
                if time.monotonic() > deadline:
                    raise ImageResolutionError(f"Timed out after {timeout:g}s")
            return bytes(buf)
    except requests.Timeout as exc:
        raise ImageResolutionError(f"Timed out after {timeout:g}s") from exc
    except requests.RequestException as exc:
        raise ImageResolutionError(str(exc)) from exc


def resolve_image_url(
    store: StagingStore,
    url: str,
    upload_id: str,
    fetcher: Fetcher = fetch_image,
    timeout: float = IMAGE_FETCH_TIMEOUT_SECONDS,
) -> ImageCell:
    """Thumbnail one image URL, read-through the per-upload cache. Failures land on the cell."""
    key = image_cache_key(upload_id, url)
    cached = store.get(key)
    if cached is not None:
        return ImageCell(url=url, thumbnail=base64.b64encode(cached).decode("ascii"), cached=True)

    try:
        thumbnail = cell_thumbnail(fetcher(url, timeout))
    except (ImageResolutionError, ImageProcessingFailed) as exc:
        reason = getattr(exc, "message", None) or str(exc)
        logger.warning("Failed to process image from %s: %s", url, reason)
        return ImageCell(url=url, error=reason)

    store.set(key, thumbnail, IMAGE_CACHE_TTL_SECONDS)
    return ImageCell(url=url, thumbnail=base64.b64encode(thumbnail).decode("ascii"))


def resolve_preview_images(
    store: StagingStore,
    preview: TabularPreview,
    upload_id: str,
    fetcher: Fetcher = fetch_image,
) -> TabularPreview:
    """
    Replace image-URL cells of detected columns with ImageCell results, in place.
    Every cell is fetched concurrently; the preview row cap bounds the fan-out.
    """
    columns = detect_image_columns(preview.headers, preview.rows)
    preview.image_columns = columns
    preview.has_images = bool(columns)
    if not columns:
        return preview

    logger.info("Found %d image columns: %s", len(columns), [c.name for c in columns])

    targets: List[Tuple[int, int, str]] = [
        (r, col.index, row[col.index])
        for r, row in enumerate(preview.rows)
        for col in columns
        if col.index < len(row) and is_image_url(row[col.index])
    ]
    if not targets:
        return preview

    with ThreadPoolExecutor(max_workers=len(targets)) as executor:
        results = list(executor.map(lambda t: resolve_image_url(store, t[2], upload_id, fetcher), targets))

    for (r, c, _), cell in zip(targets, results):
        preview.rows[r][c] = cell
    return preview


def batch_resolve_images(
    store: StagingStore,
    urls: Sequence[str],
    upload_id: str,
    batch_size: int = IMAGE_BATCH_SIZE,
    pause: float = IMAGE_BATCH_PAUSE_SECONDS,
    fetcher: Fetcher = fetch_image,
) -> List[ImageCell]:
    """
    Resolve an arbitrary list of URLs with at most batch_size fetches in flight.

    A fixed pool of workers drains a shared queue; each worker pauses between
    network fetches so remote hosts see a paced request rate. Results keep input order.
    """
    results: List[Optional[ImageCell]] = [None] * len(urls)
    jobs: "queue.Queue[Tuple[int, str]]" = queue.Queue()
    for item in enumerate(urls):
        jobs.put(item)

    def worker():
        while True:
            try:
                index, url = jobs.get_nowait()
            except queue.Empty:
                return
            fetched = is_image_url(url)
            try:
                if fetched:
                    cell = resolve_image_url(store, url, upload_id, fetcher)
                else:
                    cell = ImageCell(url=url, error="Not an image URL")
                results[index] = cell
            finally:
                jobs.task_done()
            if pause > 0 and fetched and not cell.cached:
                time.sleep(pause)

    workers = [threading.Thread(target=worker, daemon=True) for _ in range(max(1, min(batch_size, len(urls))))]
    for t in workers:
        t.start()
    for t in workers:
        t.join()

    return [cell if cell is not None else ImageCell(url=url, error="Not resolved") for cell, url in zip(results, urls)]
