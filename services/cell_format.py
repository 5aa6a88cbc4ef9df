"""Text rendering of parsed cell values, shared by every tabular parser."""
import json
import math
from typing import Any

import pandas as pd


def cell_text(value: Any) -> str:
    """Render any parsed value as preview text; blanks become empty strings."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if value is pd.NaT:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
