import os
from typing import Literal

FileType = Literal["image", "dataset", "document"]

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "bmp"}
DATASET_EXTENSIONS = {"csv", "json", "xlsx", "xls"}

CSV_MIME_TYPES = {"text/csv", "application/csv"}
JSON_MIME_TYPES = {"application/json", "text/json"}
SPREADSHEET_MIME_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
DATASET_MIME_TYPES = CSV_MIME_TYPES | JSON_MIME_TYPES | SPREADSHEET_MIME_TYPES


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def classify(filename: str, mime_type: str = "") -> FileType:
    """Classify an upload as image, dataset or document. Total: anything else is a document."""
    ext = file_extension(filename)
    mime = (mime_type or "").lower().split(";")[0].strip()

    if ext in IMAGE_EXTENSIONS or mime.startswith("image/"):
        return "image"
    if ext in DATASET_EXTENSIONS or mime in DATASET_MIME_TYPES:
        return "dataset"
    return "document"


def tabular_format(filename: str, mime_type: str = "") -> str:
    """Pick the parser for a dataset upload: 'csv', 'json' or 'spreadsheet'."""
    ext = file_extension(filename)
    mime = (mime_type or "").lower().split(";")[0].strip()

    if ext == "csv" or (ext not in DATASET_EXTENSIONS and mime in CSV_MIME_TYPES):
        return "csv"
    if ext == "json" or (ext not in DATASET_EXTENSIONS and mime in JSON_MIME_TYPES):
        return "json"
    return "spreadsheet"
