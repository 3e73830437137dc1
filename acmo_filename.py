"""
acmo_filename.py — pick a non-colliding name for an ACMO CSV file.

Naming rule:
    ACMO-[Region]-[Crop/stratum]-[Climate id]-[RAP id]-[Management id]-[model].csv

The DOME part is read back from a previously written ACMO metadata file. A
segment is "0" when the column is missing or blank and "M" when the
experiments of the batch disagree on it. If the file already exists, " (1)",
" (2)", ... is appended before the extension.
"""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from dome_utils import get_dome_meta_info, get_dome_meta_infos

logger = logging.getLogger(__name__)

MIXED = "M"
UNSET = "0"

# Header codes (case-insensitive) of the columns the file name is built from.
REGION_COL = "REG_ID"
CROP_COL = "CRID_TEXT"
CLIMATE_COL = "CLIM_ID"
RAP_COL = "RAP_ID"
MAN_COL = "MAN_ID"
FIELD_COL = "FIELD_OVERLAY"
SEASONAL_COL = "SEASONAL_STRATEGY"
_NAME_COLUMNS = (REGION_COL, CROP_COL, CLIMATE_COL, RAP_COL, MAN_COL, FIELD_COL, SEASONAL_COL)


def read_acmo_meta(meta_path: Union[str, Path]) -> Optional[pd.DataFrame]:
    """Load the "#" header row and "*" data rows of an ACMO metadata file.

    All values are kept as text; short rows are padded with "". Returns None
    when the file has no header row or no data row.
    """
    title: Optional[List[str]] = None
    rows: List[List[str]] = []
    with open(meta_path, newline="", encoding="utf-8") as f:
        for row in csv.reader(f, delimiter=",", quotechar='"'):
            if not row:
                continue
            if row[0] == "#":
                title = row
            elif row[0] == "*":
                rows.append(row)
    if title is None or not rows:
        return None
    width = len(title)
    rows = [(r + [""] * width)[:width] for r in rows]
    return pd.DataFrame(rows, columns=title, dtype=str)


def _locate_columns(columns) -> Dict[str, int]:
    found: Dict[str, int] = {}
    for i, name in enumerate(columns):
        key = str(name).strip().upper()
        if key in _NAME_COLUMNS and key not in found:
            found[key] = i
    return found


def _segment(meta: pd.DataFrame, idx: Optional[int], compact: bool = False) -> str:
    if idx is None:
        return UNSET
    values = meta.iloc[:, idx].fillna("")
    if compact:
        values = values.str.replace(" ", "", regex=False).str.upper()
    values = values.map(lambda v: v or UNSET)
    if values.nunique() > 1:
        return MIXED
    return values.iloc[0]


def _recover_region(first_row: pd.Series, cols: Dict[str, int]) -> str:
    """Region id from the first experiment's seasonal strategy or field overlay DOME id."""
    for key in (SEASONAL_COL, FIELD_COL):
        idx = cols.get(key)
        dome_str = first_row.iloc[idx] if idx is not None else ""
        if dome_str:
            return get_dome_meta_info(get_dome_meta_infos(dome_str), "reg_id")
    return ""


def dome_info_prefix(meta: Optional[pd.DataFrame]) -> str:
    """The "<region>-<crop>-<climate>-<rap>-<man>-" part of the file name, or ""."""
    if meta is None or meta.empty:
        return ""
    cols = _locate_columns(meta.columns)
    if REGION_COL not in cols or not any(k in cols for k in (CROP_COL, CLIMATE_COL, RAP_COL, MAN_COL)):
        return ""

    first_row = meta.iloc[0]
    region = first_row.iloc[cols[REGION_COL]] or _recover_region(first_row, cols)
    if not region:
        return ""
    segments = [
        region,
        _segment(meta, cols.get(CROP_COL), compact=True),
        _segment(meta, cols.get(CLIMATE_COL)),
        _segment(meta, cols.get(RAP_COL)),
        _segment(meta, cols.get(MAN_COL)),
    ]
    return "".join(f"{s}-" for s in segments)


def create_csv_file(
    output_dir: Union[str, Path],
    model: str,
    meta_path: Optional[Union[str, Path]] = None,
) -> Path:
    """Return a free ACMO CSV path in ``output_dir``; the file is not created.

    An unreadable ``meta_path`` only drops the DOME part of the name.
    """
    prefix = ""
    if meta_path:
        try:
            prefix = dome_info_prefix(read_acmo_meta(meta_path))
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.warning("Cannot read ACMO metadata %s: %s", meta_path, e)
            prefix = ""

    out_dir = Path(output_dir)
    stem = f"ACMO-{prefix}{model}"
    path = out_dir / f"{stem}.csv"
    count = 1
    while path.exists():
        path = out_dir / f"{stem} ({count}).csv"
        count += 1
    return path
