import json
from typing import Optional

from config import PREVIEW_TTL_SECONDS
from models.common_models import PreviewDocument, preview_from_json, preview_to_json
from services.staging_store import StagingStore


def preview_key(upload_id: str) -> str:
    return f"preview:dataset:{upload_id}"


def write_preview(store: StagingStore, upload_id: str, preview: PreviewDocument, ttl: int = PREVIEW_TTL_SECONDS) -> None:
    store.set(preview_key(upload_id), json.dumps(preview_to_json(preview)), ttl)


def read_preview(store: StagingStore, upload_id: str) -> Optional[PreviewDocument]:
    raw = store.get(preview_key(upload_id))
    if raw is None:
        return None
    return preview_from_json(json.loads(raw))
