from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from config import MAX_UPLOAD_BYTES
from models.common_models import (
    ChunkUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadProgress,
    UploadResultResponse,
)
from routers.dependencies import get_image_fetcher, get_record_store, get_staging_store
from services.chunk_session_service import cleanup_upload, get_progress, init_upload, stage_chunk
from services.errors import UploadTooLarge
from services.image_url_service import Fetcher
from services.ingestion_service import (
    complete_upload,
    completed_upload,
    ingest_file,
    is_completing,
    preview_url,
)
from services.record_store import RecordStore
from services.staging_store import StagingStore

router = APIRouter(prefix="/upload", tags=["upload"])


@router.post("/init", response_model=InitUploadResponse)
async def init_chunked_upload(req: InitUploadRequest, store: StagingStore = Depends(get_staging_store)):
    session = init_upload(store, req.filename, req.file_size, req.mime_type)
    return InitUploadResponse(
        upload_id=session.upload_id,
        chunk_size=session.chunk_size,
        total_chunks=session.total_chunks,
    )


@router.post("/chunk", response_model=ChunkUploadResponse, response_model_exclude_none=True)
async def upload_chunk(
    upload_id: str = Form(..., alias="uploadId"),
    chunk_index: int = Form(..., alias="chunkIndex"),
    total_chunks: Optional[int] = Form(None, alias="totalChunks"),
    filename: Optional[str] = Form(None),
    file_size: Optional[int] = Form(None, alias="fileSize"),
    mime_type: Optional[str] = Form(None, alias="mimeType"),
    chunk: UploadFile = File(...),
    store: StagingStore = Depends(get_staging_store),
    records: RecordStore = Depends(get_record_store),
    fetcher: Fetcher = Depends(get_image_fetcher),
):
    data = await chunk.read()
    if not data:
        raise HTTPException(status_code=400, detail="Missing chunk data")

    done = completed_upload(store, records, upload_id)
    if done is not None:
        return _completed_response(upload_id, done, "Upload already complete")
    if is_completing(store, upload_id):
        return _finalizing_response(upload_id, store)

    session, progress = stage_chunk(
        store, upload_id, chunk_index, data, filename, file_size, mime_type, total_chunks
    )

    if not session.is_complete:
        return ChunkUploadResponse(
            message=f"Chunk {chunk_index + 1}/{session.total_chunks} uploaded",
            upload_id=upload_id,
            is_complete=False,
            progress=progress,
        )

    # Reassembly, parsing and image fetches block; keep them off the event loop.
    record = await run_in_threadpool(complete_upload, store, records, session, fetcher)
    if record is None:
        return _finalizing_response(upload_id, store)
    progress.is_complete = True
    progress.dataset_id = record.id
    return _completed_response(upload_id, progress, "Upload complete")


def _completed_response(upload_id: str, progress: UploadProgress, message: str) -> ChunkUploadResponse:
    return ChunkUploadResponse(
        message=message,
        upload_id=upload_id,
        is_complete=True,
        progress=progress,
        dataset_id=progress.dataset_id,
        preview_url=preview_url(progress.dataset_id),
    )


def _finalizing_response(upload_id: str, store: StagingStore) -> ChunkUploadResponse:
    return ChunkUploadResponse(
        message="Upload is being finalized",
        upload_id=upload_id,
        is_complete=False,
        progress=get_progress(store, upload_id),
    )


@router.get("/progress/{upload_id}", response_model=UploadProgress, response_model_exclude_none=True)
async def upload_progress(upload_id: str, store: StagingStore = Depends(get_staging_store)):
    return get_progress(store, upload_id)


@router.delete("/{upload_id}")
async def cancel_upload(upload_id: str, store: StagingStore = Depends(get_staging_store)):
    removed = cleanup_upload(store, upload_id)
    return {"success": True, "uploadId": upload_id, "removedKeys": removed}


@router.post("/file", response_model=UploadResultResponse)
async def upload_file(
    file: UploadFile = File(...),
    store: StagingStore = Depends(get_staging_store),
    records: RecordStore = Depends(get_record_store),
    fetcher: Fetcher = Depends(get_image_fetcher),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > MAX_UPLOAD_BYTES:
        raise UploadTooLarge(f"File size exceeds {MAX_UPLOAD_BYTES // (1024 ** 3)}GB limit")

    record = await run_in_threadpool(
        ingest_file, store, records, content, file.filename, file.content_type or "", None, 1, fetcher
    )
    return UploadResultResponse(
        message="File uploaded successfully",
        dataset_id=record.id,
        preview_url=preview_url(record.id),
    )
