from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from config import IMAGE_BATCH_SIZE
from models.common_models import (
    BatchInfo,
    DatasetPreviewResponse,
    FinalizeResponse,
    ResolveImagesRequest,
    ResolveImagesResponse,
    preview_from_json,
)
from routers.dependencies import get_image_fetcher, get_record_store, get_staging_store
from services.image_url_service import Fetcher, batch_resolve_images
from services.lifecycle_service import finalize, get_live_dataset, time_remaining_ms
from services.preview_cache import read_preview
from services.record_store import RecordStore
from services.staging_store import StagingStore

router = APIRouter(tags=["datasets"])


@router.post("/datasets/{dataset_id}/finalize", response_model=FinalizeResponse)
async def finalize_dataset(dataset_id: str, records: RecordStore = Depends(get_record_store)):
    record, changed = finalize(records, dataset_id)
    return FinalizeResponse(
        id=record.id,
        status=record.status,
        finalized_at=record.finalized_at,
        message="Dataset finalized successfully" if changed else "Dataset is already finalized",
    )


@router.get("/datasets/{dataset_id}/preview", response_model=DatasetPreviewResponse)
async def preview_dataset(
    dataset_id: str,
    store: StagingStore = Depends(get_staging_store),
    records: RecordStore = Depends(get_record_store),
):
    record = get_live_dataset(records, dataset_id)

    # Fast store first; the durable copy is authoritative when the cache entry is gone.
    preview = read_preview(store, record.staging_ref) if record.staging_ref else None
    if preview is None:
        preview = preview_from_json(record.preview)

    return DatasetPreviewResponse(
        id=record.id,
        filename=record.original_name,
        file_size=record.file_size,
        file_type=record.file_type,
        preview=preview,
        status=record.status,
        uploaded_at=record.uploaded_at,
        expires_at=record.expires_at,
        time_remaining_ms=time_remaining_ms(record),
        batch_info=BatchInfo.model_validate(record.batch_info) if record.batch_info else None,
    )


@router.post("/images/resolve", response_model=ResolveImagesResponse)
async def resolve_images(
    req: ResolveImagesRequest,
    store: StagingStore = Depends(get_staging_store),
    fetcher: Fetcher = Depends(get_image_fetcher),
):
    results = await run_in_threadpool(
        batch_resolve_images,
        store,
        req.urls,
        req.upload_id,
        req.batch_size or IMAGE_BATCH_SIZE,
        fetcher=fetcher,
    )
    return ResolveImagesResponse(results=results)
