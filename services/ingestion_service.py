"""Turn a complete upload into a preview and a durable dataset record."""
import uuid
from typing import Optional, Tuple

from config import PROGRESS_TTL_SECONDS, SESSION_TTL_SECONDS
from logger import get_logger
from models.common_models import PreviewDocument, UploadProgress, preview_to_json
from models.dataset_db_model import DatasetDB, utcnow
from models.session_models import UploadSession
from services.chunk_session_service import cleanup_upload, load_session, write_progress
from services.errors import ImageProcessingFailed
from services.file_type_service import FileType, classify
from services.image_service import process_image
from services.image_url_service import Fetcher, fetch_image, resolve_preview_images
from services.lifecycle_service import DatasetStatus, default_expiry
from services.preview_cache import write_preview
from services.preview_service import build_tabular_preview, document_preview
from services.reassembly_service import assemble
from services.record_store import RecordStore
from services.staging_store import StagingStore

logger = get_logger(__name__)

COMPLETING = "completing"


def preview_url(dataset_id: str) -> str:
    return f"/preview/{dataset_id}"


def completion_key(upload_id: str) -> str:
    # Outside the upload:{id}:* namespace so it survives cleanup.
    return f"completion:{upload_id}"


def is_completing(store: StagingStore, upload_id: str) -> bool:
    raw = store.get(completion_key(upload_id))
    return raw is not None and raw.decode() == COMPLETING


def completed_upload(store: StagingStore, records: RecordStore, upload_id: str) -> Optional[UploadProgress]:
    """
    Final progress of an upload that already produced a dataset, else None.

    The completion marker answers while it lives. Once it and the session are
    gone, the durable record is looked up by its staging reference.
    """
    raw = store.get(completion_key(upload_id))
    if raw is not None:
        if raw.decode() == COMPLETING:
            return None
        record = records.get(raw.decode())
    elif load_session(store, upload_id) is None:
        record = records.find_by_staging_ref(upload_id)
    else:
        return None
    if record is None:
        return None

    total = (record.batch_info or {}).get("totalBatches", 1)
    return UploadProgress(
        uploaded_chunks=total,
        total_chunks=total,
        percentage=100,
        is_complete=True,
        dataset_id=record.id,
    )


def build_preview(
    store: StagingStore,
    content: bytes,
    filename: str,
    mime_type: str,
    upload_id: str,
    fetcher: Fetcher = fetch_image,
) -> Tuple[FileType, PreviewDocument]:
    """Dispatch on file type. Images may raise ImageProcessingFailed; tables only degrade."""
    file_type = classify(filename, mime_type)

    if file_type == "image":
        return file_type, process_image(content)

    if file_type == "dataset":
        preview = build_tabular_preview(content, filename, mime_type)
        if not preview.degraded:
            resolve_preview_images(store, preview, upload_id, fetcher)
        return file_type, preview

    return file_type, document_preview()


def ingest_file(
    store: StagingStore,
    records: RecordStore,
    content: bytes,
    filename: str,
    mime_type: str = "",
    upload_id: Optional[str] = None,
    total_chunks: int = 1,
    fetcher: Fetcher = fetch_image,
) -> DatasetDB:
    """Process a fully reassembled file, cache its preview and create the dataset record."""
    upload_id = upload_id or uuid.uuid4().hex
    file_type, preview = build_preview(store, content, filename, mime_type, upload_id, fetcher)

    write_preview(store, upload_id, preview)

    now = utcnow()
    record = records.create(
        id=uuid.uuid4().hex,
        filename=filename,
        original_name=filename,
        file_size=len(content),
        mime_type=mime_type or "",
        file_type=file_type,
        content=None if file_type == "image" else content,
        preview=preview_to_json(preview),
        batch_info={
            "totalBatches": total_chunks,
            "uploadedBatches": total_chunks,
            "batchSize": -(-len(content) // max(total_chunks, 1)),
            "isComplete": True,
        },
        status=DatasetStatus.PENDING.value,
        staging_ref=upload_id,
        uploaded_at=now,
        expires_at=default_expiry(now),
    )
    logger.info("Dataset %s created from %s (%s, %d bytes)", record.id, filename, file_type, len(content))
    return record


def complete_upload(
    store: StagingStore,
    records: RecordStore,
    session: UploadSession,
    fetcher: Fetcher = fetch_image,
) -> Optional[DatasetDB]:
    """
    Reassemble a complete upload and ingest it, at most once per upload.

    Returns None when another request is already completing the same upload.
    MissingChunk leaves the staged chunks in place so the client can resend;
    an unprocessable image clears them since the same bytes would fail again.
    """
    marker = completion_key(session.upload_id)
    if not store.set_if_absent(marker, COMPLETING, SESSION_TTL_SECONDS):
        logger.info("Upload %s is already being completed", session.upload_id)
        return None

    try:
        content = assemble(store, session.upload_id, session.total_chunks)
        record = ingest_file(
            store,
            records,
            content,
            session.filename,
            session.mime_type,
            upload_id=session.upload_id,
            total_chunks=session.total_chunks,
            fetcher=fetcher,
        )
    except ImageProcessingFailed:
        logger.warning("Upload %s rejected: image could not be processed", session.upload_id)
        cleanup_upload(store, session.upload_id)
        store.delete(marker)
        raise
    except Exception:
        store.delete(marker)
        raise

    store.set(marker, record.id, PROGRESS_TTL_SECONDS)
    cleanup_upload(store, session.upload_id)
    write_progress(
        store,
        session.upload_id,
        UploadProgress(
            uploaded_chunks=session.total_chunks,
            total_chunks=session.total_chunks,
            percentage=100,
            is_complete=True,
            dataset_id=record.id,
        ),
    )
    return record
