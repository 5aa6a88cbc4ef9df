import io

import pandas as pd

from config import PREVIEW_ROWS
from models.common_models import TabularPreview
from services.errors import ParsingDegraded
from services.cell_format import cell_text


def _header_text(value) -> str:
    # pandas names blank header cells "Unnamed: <n>"
    if isinstance(value, str) and value.startswith("Unnamed: "):
        return ""
    return cell_text(value)


def parse_spreadsheet(content: bytes, n_rows: int = PREVIEW_ROWS) -> TabularPreview:
    """
    Preview the first worksheet of an .xlsx/.xls workbook.
    Row 1 holds the headers; formulas come back as their cached results.
    """
    try:
        df = pd.read_excel(io.BytesIO(content), sheet_name=0, header=0, dtype=object)
    except Exception as exc:
        raise ParsingDegraded(f"Excel parsing failed: {exc}") from exc

    headers = [_header_text(c) for c in df.columns]
    rows = [[cell_text(v) for v in record] for record in df.head(n_rows).itertuples(index=False, name=None)]

    return TabularPreview(
        headers=headers,
        rows=rows,
        total_rows=int(df.shape[0]),
        total_columns=len(headers),
    )
