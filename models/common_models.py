from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# ---------------------------------------------------------------------------
# Preview documents
# ---------------------------------------------------------------------------

class ImageCell(CamelModel):
    """A tabular cell holding a resolved image URL: either a thumbnail or an error, never both."""

    type: Literal["image"] = "image"
    url: str
    thumbnail: Optional[str] = None
    error: Optional[str] = None
    cached: bool = False

    @model_validator(mode="after")
    def _thumbnail_xor_error(self):
        if self.thumbnail is not None and self.error is not None:
            raise ValueError("image cell cannot carry both a thumbnail and an error")
        return self


# A cell is plain text or a resolved image.
Cell = Union[str, ImageCell]


class ImageColumn(CamelModel):
    index: int
    name: str
    confidence: float = 0.0


class TabularPreview(CamelModel):
    type: Literal["table"] = "table"
    headers: List[str] = Field(default_factory=list)
    rows: List[List[Cell]] = Field(default_factory=list)
    total_rows: int = 0
    total_columns: int = 0
    has_images: bool = False
    image_columns: List[ImageColumn] = Field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None


class Dimensions(CamelModel):
    width: int
    height: int


class ImagePreview(CamelModel):
    type: Literal["image"] = "image"
    thumbnail: str
    compressed: str
    dimensions: Dimensions
    format: str
    size: int


PreviewDocument = Annotated[Union[TabularPreview, ImagePreview], Field(discriminator="type")]

_preview_adapter = TypeAdapter(PreviewDocument)


def preview_to_json(preview: PreviewDocument) -> Dict[str, Any]:
    return preview.model_dump(mode="json", by_alias=True)


def preview_from_json(data: Dict[str, Any]) -> PreviewDocument:
    return _preview_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Upload protocol
# ---------------------------------------------------------------------------

class InitUploadRequest(CamelModel):
    filename: str
    file_size: int
    mime_type: str = ""


class InitUploadResponse(CamelModel):
    upload_id: str
    chunk_size: int
    total_chunks: int


class UploadProgress(CamelModel):
    uploaded_chunks: int
    total_chunks: int
    percentage: int
    is_complete: bool = False
    dataset_id: Optional[str] = None


class ChunkUploadResponse(CamelModel):
    success: bool = True
    message: str
    upload_id: str
    is_complete: bool
    progress: UploadProgress
    dataset_id: Optional[str] = None
    preview_url: Optional[str] = None


class UploadResultResponse(CamelModel):
    success: bool = True
    message: str
    dataset_id: str
    preview_url: str


# ---------------------------------------------------------------------------
# Dataset lifecycle
# ---------------------------------------------------------------------------

class FinalizeResponse(CamelModel):
    id: str
    status: str
    finalized_at: Optional[UtcDatetime] = None
    message: str


class BatchInfo(CamelModel):
    total_batches: int = 0
    uploaded_batches: int = 0
    batch_size: int = 0
    is_complete: bool = False


class DatasetPreviewResponse(CamelModel):
    id: str
    filename: str
    file_size: int
    file_type: str
    preview: PreviewDocument
    status: str
    uploaded_at: Optional[UtcDatetime] = None
    expires_at: Optional[UtcDatetime] = None
    time_remaining_ms: Optional[int] = None
    batch_info: Optional[BatchInfo] = None


# ---------------------------------------------------------------------------
# Bulk image resolution
# ---------------------------------------------------------------------------

class ResolveImagesRequest(CamelModel):
    upload_id: str
    urls: List[str]
    batch_size: Optional[int] = Field(default=None, ge=1, le=50)


class ResolveImagesResponse(CamelModel):
    results: List[ImageCell]
