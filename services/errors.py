from typing import Any, Dict, Optional


class IngestionError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class UploadValidationError(IngestionError):
    status_code = 400


class UploadTooLarge(UploadValidationError):
    status_code = 413


class SessionNotFound(IngestionError):
    status_code = 404

    def __init__(self, upload_id: str):
        super().__init__("Upload not found or expired", {"uploadId": upload_id})
        self.upload_id = upload_id


class DatasetNotFound(IngestionError):
    status_code = 404

    def __init__(self, dataset_id: str):
        super().__init__("Dataset not found", {"datasetId": dataset_id})
        self.dataset_id = dataset_id


class DatasetGone(IngestionError):
    status_code = 410

    def __init__(self, dataset_id: str):
        super().__init__("Dataset has expired", {"datasetId": dataset_id})
        self.dataset_id = dataset_id


class MissingChunk(IngestionError):
    status_code = 400

    def __init__(self, upload_id: str, chunk_index: int):
        super().__init__(f"Missing chunk {chunk_index}", {"uploadId": upload_id, "chunkIndex": chunk_index})
        self.upload_id = upload_id
        self.chunk_index = chunk_index


class ImageProcessingFailed(IngestionError):
    status_code = 422

    def __init__(self, reason: str):
        super().__init__(f"Image processing failed: {reason}")


class InvalidStatusTransition(IngestionError):
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move dataset from '{current}' to '{target}'")
        self.current = current
        self.target = target


class ParsingDegraded(Exception):
    """A tabular parser could not read the input; callers fall back to a degraded preview."""


class ImageResolutionError(Exception):
    """A single embedded image URL could not be fetched or thumbnailed."""
