import io
import json
from typing import List

import pandas as pd

from config import PREVIEW_ROWS
from logger import get_logger
from models.common_models import TabularPreview
from services.cell_format import cell_text
from services.errors import ParsingDegraded
from services.excel_reader_service import parse_spreadsheet
from services.file_type_service import tabular_format

logger = get_logger(__name__)

CSV_READ_CHUNK_ROWS = 50_000


def degraded_preview(reason: str) -> TabularPreview:
    return TabularPreview(
        headers=["Error"],
        rows=[["Failed to parse file"]],
        total_rows=0,
        total_columns=1,
        degraded=True,
        error=reason,
    )


def document_preview() -> TabularPreview:
    return TabularPreview(
        headers=["Data"],
        rows=[["File content preview not available"]],
        total_rows=0,
        total_columns=1,
    )


def parse_csv(content: bytes, n_rows: int = PREVIEW_ROWS) -> TabularPreview:
    """
    Preview a CSV file: header from line 1, first n_rows data rows.
    The file is read in chunks so totals cover the whole input without loading it at once.
    Rows longer than the header are cut to its width; short rows are padded with blanks.
    """
    options = dict(dtype=str, keep_default_na=False, skip_blank_lines=True, encoding="utf-8-sig")
    try:
        width = len(pd.read_csv(io.BytesIO(content), nrows=0, **options).columns)
        reader = pd.read_csv(
            io.BytesIO(content),
            engine="python",
            index_col=False,
            on_bad_lines=lambda fields: fields[:width],
            chunksize=CSV_READ_CHUNK_ROWS,
            **options,
        )
        headers: List[str] = []
        rows: List[List[str]] = []
        total_rows = 0
        with reader:
            for chunk in reader:
                if not headers:
                    headers = [str(c) for c in chunk.columns]
                if len(rows) < n_rows:
                    needed = n_rows - len(rows)
                    rows.extend(
                        [cell_text(v) for v in record]
                        for record in chunk.head(needed).itertuples(index=False, name=None)
                    )
                total_rows += len(chunk)
    except pd.errors.EmptyDataError:
        return TabularPreview()
    except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as exc:
        raise ParsingDegraded(f"CSV parsing failed: {exc}") from exc

    return TabularPreview(
        headers=headers,
        rows=rows,
        total_rows=total_rows,
        total_columns=len(headers),
    )


def parse_json(content: bytes, n_rows: int = PREVIEW_ROWS) -> TabularPreview:
    """
    Preview a JSON array of objects; headers come from the first object's keys.
    Anything else is shown as a single "Data" cell.
    """
    try:
        data = json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParsingDegraded(f"JSON parsing failed: {exc}") from exc

    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = [str(k) for k in data[0].keys()]
        rows = [
            [cell_text(obj.get(h)) if isinstance(obj, dict) else "" for h in headers]
            for obj in data[:n_rows]
        ]
        return TabularPreview(
            headers=headers,
            rows=rows,
            total_rows=len(data),
            total_columns=len(headers),
        )

    return TabularPreview(
        headers=["Data"],
        rows=[[json.dumps(data, ensure_ascii=False)]],
        total_rows=1,
        total_columns=1,
    )


def build_tabular_preview(content: bytes, filename: str, mime_type: str = "", n_rows: int = PREVIEW_ROWS) -> TabularPreview:
    """Dispatch to the matching parser; parse failures give a degraded preview, never an error."""
    fmt = tabular_format(filename, mime_type)
    try:
        if fmt == "csv":
            return parse_csv(content, n_rows)
        if fmt == "json":
            return parse_json(content, n_rows)
        return parse_spreadsheet(content, n_rows)
    except ParsingDegraded as exc:
        logger.warning("Preview degraded for %s: %s", filename, exc)
        return degraded_preview(str(exc))
