"""Chunk Session Manager: per-upload chunk bookkeeping in the staging store."""
import json
import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from config import (
    CHUNK_TTL_SECONDS,
    LARGE_CHUNK_SIZE,
    LARGE_FILE_THRESHOLD_BYTES,
    MAX_UPLOAD_BYTES,
    PROGRESS_TTL_SECONDS,
    SESSION_TTL_SECONDS,
    SMALL_CHUNK_SIZE,
)
from logger import get_logger
from models.common_models import UploadProgress
from models.session_models import UploadSession
from services.errors import SessionNotFound, UploadTooLarge, UploadValidationError
from services.staging_store import StagingStore

logger = get_logger(__name__)


def metadata_key(upload_id: str) -> str:
    return f"upload:{upload_id}:metadata"


def chunk_key(upload_id: str, index: int) -> str:
    return f"upload:{upload_id}:chunk:{index}"


def progress_key(upload_id: str) -> str:
    return f"upload:{upload_id}:progress"


def plan_chunks(file_size: int) -> Tuple[int, int]:
    """Return (chunk_size, total_chunks) for a declared file size."""
    if file_size <= 0:
        raise UploadValidationError("fileSize must be a positive integer")
    if file_size > MAX_UPLOAD_BYTES:
        raise UploadTooLarge(f"File size exceeds {MAX_UPLOAD_BYTES // (1024 ** 3)}GB limit")
    chunk_size = LARGE_CHUNK_SIZE if file_size > LARGE_FILE_THRESHOLD_BYTES else SMALL_CHUNK_SIZE
    return chunk_size, math.ceil(file_size / chunk_size)


def _new_session(upload_id: str, filename: str, file_size: int, mime_type: str) -> UploadSession:
    if not filename:
        raise UploadValidationError("Missing filename")
    chunk_size, total_chunks = plan_chunks(file_size)
    return UploadSession(
        upload_id=upload_id,
        filename=filename,
        file_size=file_size,
        mime_type=mime_type or "",
        chunk_size=chunk_size,
        total_chunks=total_chunks,
        created_at=datetime.now(timezone.utc).isoformat(),
    )


def _save_session(store: StagingStore, session: UploadSession) -> None:
    store.set(metadata_key(session.upload_id), session.model_dump_json(by_alias=True), SESSION_TTL_SECONDS)


def load_session(store: StagingStore, upload_id: str) -> Optional[UploadSession]:
    raw = store.get(metadata_key(upload_id))
    if raw is None:
        return None
    return UploadSession.model_validate_json(raw)


def compute_progress(session: UploadSession) -> UploadProgress:
    count = session.uploaded_count
    return UploadProgress(
        uploaded_chunks=count,
        total_chunks=session.total_chunks,
        percentage=int(count * 100 / session.total_chunks + 0.5),
        is_complete=session.is_complete,
    )


def write_progress(store: StagingStore, upload_id: str, progress: UploadProgress) -> None:
    store.set(progress_key(upload_id), progress.model_dump_json(by_alias=True), PROGRESS_TTL_SECONDS)


def init_upload(store: StagingStore, filename: str, file_size: int, mime_type: str = "") -> UploadSession:
    """Open a new upload session and decide its chunking plan."""
    session = _new_session(uuid.uuid4().hex, filename, file_size, mime_type)
    _save_session(store, session)
    logger.info(
        "Upload %s initialised: %s (%d bytes, %d chunks of %d)",
        session.upload_id, filename, file_size, session.total_chunks, session.chunk_size,
    )
    return session


def stage_chunk(
    store: StagingStore,
    upload_id: str,
    index: int,
    data: bytes,
    filename: Optional[str] = None,
    file_size: Optional[int] = None,
    mime_type: Optional[str] = None,
    total_chunks: Optional[int] = None,
) -> Tuple[UploadSession, UploadProgress]:
    """Store one chunk and record its arrival.

    Re-sending an index overwrites the blob without counting it twice. If the
    session metadata is gone, it is rebuilt from filename/file_size when given,
    otherwise SessionNotFound is raised.
    """
    session = load_session(store, upload_id)
    if session is None:
        if not filename or not file_size:
            raise SessionNotFound(upload_id)
        session = _new_session(upload_id, filename, file_size, mime_type or "")
        logger.info("Upload %s bootstrapped from first chunk", upload_id)

    if total_chunks is not None and total_chunks != session.total_chunks:
        raise UploadValidationError(
            f"totalChunks {total_chunks} does not match the upload plan of {session.total_chunks}",
            {"uploadId": upload_id},
        )

    if not 0 <= index < session.total_chunks:
        raise UploadValidationError(
            f"chunkIndex {index} out of range for {session.total_chunks} chunks",
            {"uploadId": upload_id, "chunkIndex": index},
        )
    if not data:
        raise UploadValidationError("Empty chunk", {"uploadId": upload_id, "chunkIndex": index})
    if len(data) > session.chunk_size:
        raise UploadValidationError(
            f"Chunk of {len(data)} bytes exceeds chunk size {session.chunk_size}",
            {"uploadId": upload_id, "chunkIndex": index},
        )

    store.set(chunk_key(upload_id, index), data, CHUNK_TTL_SECONDS)
    if index not in session.uploaded_chunks:
        session.uploaded_chunks.append(index)
        session.uploaded_chunks.sort()

    # Sliding window: the session and every chunk it counts expire together.
    for arrived in session.uploaded_chunks:
        if arrived != index:
            store.expire(chunk_key(upload_id, arrived), CHUNK_TTL_SECONDS)
    _save_session(store, session)

    progress = compute_progress(session)
    write_progress(store, upload_id, progress)
    return session, progress


def get_progress(store: StagingStore, upload_id: str) -> UploadProgress:
    raw = store.get(progress_key(upload_id))
    if raw is None:
        raise SessionNotFound(upload_id)
    return UploadProgress.model_validate(json.loads(raw))


def cleanup_upload(store: StagingStore, upload_id: str) -> int:
    """Delete every staging key of an upload. Best effort: TTLs are the backstop."""
    try:
        removed = store.delete_pattern(f"upload:{upload_id}:*")
    except Exception:
        logger.warning("Cleanup of upload %s failed; leaving keys to expire", upload_id, exc_info=True)
        return 0
    logger.info("Cleaned up %d staging keys for upload %s", removed, upload_id)
    return removed
