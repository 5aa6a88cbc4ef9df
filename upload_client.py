"""Client for the chunked upload protocol.

    python upload_client.py data.csv --base-url http://127.0.0.1:8000
"""
import argparse
import mimetypes
import os
import time
from typing import Any, Dict, Iterable, Optional

import requests

from logger import get_logger

logger = get_logger(__name__)

BASE_URL = "http://127.0.0.1:8000"


class UploadFailed(Exception):
    pass


def _raise_for_error(resp, what: str):
    if resp.status_code >= 400:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        raise UploadFailed(f"{what} failed ({resp.status_code}): {detail}")


def upload_file(
    path: str,
    base_url: str = BASE_URL,
    mime_type: Optional[str] = None,
    order: Optional[Iterable[int]] = None,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    session=None,
) -> Dict[str, Any]:
    """
    Upload a local file chunk by chunk and return the completing CHUNK response.

    `order` sends chunk indices in a custom order; `session` may be any object with
    requests-style post(); a requests.Session is used by default.
    """
    http = session or requests.Session()
    filename = os.path.basename(path)
    file_size = os.path.getsize(path)
    mime_type = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

    # 1. INIT
    resp = http.post(
        f"{base_url}/upload/init",
        json={"filename": filename, "fileSize": file_size, "mimeType": mime_type},
    )
    _raise_for_error(resp, "Upload init")
    plan = resp.json()
    upload_id, chunk_size, total_chunks = plan["uploadId"], plan["chunkSize"], plan["totalChunks"]
    logger.info("Uploading %s as %d chunks (%s)", filename, total_chunks, upload_id)

    # 2. CHUNKS
    indices = list(order) if order is not None else list(range(total_chunks))
    if sorted(indices) != list(range(total_chunks)):
        raise ValueError(f"order must be a permutation of 0..{total_chunks - 1}")

    last: Dict[str, Any] = {}
    with open(path, "rb") as fh:
        for index in indices:
            fh.seek(index * chunk_size)
            data = fh.read(chunk_size)
            form = {
                "uploadId": upload_id,
                "chunkIndex": str(index),
                "totalChunks": str(total_chunks),
                "filename": filename,
                "fileSize": str(file_size),
                "mimeType": mime_type,
            }

            for attempt in range(1, max_retries + 1):
                try:
                    resp = http.post(
                        f"{base_url}/upload/chunk",
                        data=form,
                        files={"chunk": (filename, data, "application/octet-stream")},
                    )
                except requests.RequestException as exc:
                    if attempt == max_retries:
                        raise UploadFailed(f"Chunk {index} failed: {exc}") from exc
                    logger.warning("Chunk %d attempt %d failed: %s", index, attempt, exc)
                    time.sleep(retry_delay)
                    continue
                # Client errors won't succeed on retry.
                if resp.status_code >= 500 and attempt < max_retries:
                    logger.warning("Chunk %d attempt %d got HTTP %d", index, attempt, resp.status_code)
                    time.sleep(retry_delay)
                    continue
                _raise_for_error(resp, f"Chunk {index}")
                break

            last = resp.json()
            logger.info("Chunk %d/%d uploaded (%s%%)", index + 1, total_chunks, last["progress"]["percentage"])

    if not last.get("isComplete"):
        raise UploadFailed(f"Upload {upload_id} did not complete")
    return last


def main(argv=None):
    parser = argparse.ArgumentParser(description="Upload a file through the chunked upload API.")
    parser.add_argument("path")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--mime-type", default=None)
    args = parser.parse_args(argv)

    result = upload_file(args.path, base_url=args.base_url, mime_type=args.mime_type)
    print(f"Dataset {result['datasetId']} ready at {args.base_url}{result['previewUrl']}")


if __name__ == "__main__":
    main()
