# src/drsstlPy/reshape.py
# SPDX-License-Identifier: MIT
"""
Regrouping helpers between the "by time slice" and "by station" views.

The spatial passes work on one ``(year, month)`` slice at a time and the
temporal passes on one station at a time. The helpers here move records
between those views without dropping or duplicating rows:

- calendar ordering (``"Jan" < "Feb" < "Mar"``, never alphabetical);
- flattening of ``(time, value)`` tables into the flat sequences exchanged
  with the per-location job, and back;
- normalization of station tables (ids, coordinates, optional elevation);
- a small table writer (CSV / Parquet / Feather by extension).
"""

from __future__ import annotations

import calendar
import os
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .exceptions import InputShapeError


# canonical column names used internally
ID, LON, LAT, ELEV = "station_id", "lon", "lat", "elev"
YEAR, MONTH = "year", "month"
NEW = "_is_new"
_ORDER = "_month_index"


# ---------------------------------------------------------------------
# Calendar ordering
# ---------------------------------------------------------------------


_MONTHS: Dict[str, int] = {}
for _i in range(1, 13):
    _MONTHS[calendar.month_abbr[_i].lower()] = _i
    _MONTHS[calendar.month_name[_i].lower()] = _i


def month_index(month) -> int:
    """Calendar index (January=1 ... December=12) of a month label.

    Accepts integers 1..12, numeric strings, English abbreviations
    (``"Jan"``) and full names (``"January"``), case-insensitively.
    """
    if isinstance(month, (int, np.integer)) and not isinstance(month, bool):
        idx = int(month)
    elif isinstance(month, (float, np.floating)) and float(month).is_integer():
        idx = int(month)
    elif isinstance(month, str):
        key = month.strip().lower()
        if key.isdigit():
            idx = int(key)
        elif key in _MONTHS:
            idx = _MONTHS[key]
        else:
            raise InputShapeError(f"Unrecognized month label {month!r}.")
    else:
        raise InputShapeError(f"Unrecognized month label {month!r}.")
    if not 1 <= idx <= 12:
        raise InputShapeError(f"Month index out of range: {month!r}.")
    return idx


def order_by_calendar(
    frame: pd.DataFrame,
    *,
    year_col: str = YEAR,
    month_col: str = MONTH,
) -> pd.DataFrame:
    """Stable sort by year, then calendar month (not by month label)."""
    out = frame.copy()
    out[_ORDER] = [month_index(m) for m in out[month_col]]
    out = out.sort_values([year_col, _ORDER], kind="mergesort")
    return out.drop(columns=_ORDER).reset_index(drop=True)


def calendar_serial(
    frame: pd.DataFrame,
    *,
    year_col: str = YEAR,
    month_col: str = MONTH,
) -> np.ndarray:
    """Months elapsed since year 0 (``12 * year + month - 1``) per row."""
    months = np.array([month_index(m) for m in frame[month_col]], dtype=float)
    return 12.0 * frame[year_col].to_numpy(dtype=float) + months - 1.0


def time_slices(frame: pd.DataFrame) -> List[Tuple[Tuple[int, Hashable], pd.DataFrame]]:
    """Split *frame* into ``((year, month), group)`` pairs in calendar order.

    The composite key is carried as a tuple; the original month label is
    kept so that the output can be reassembled with the caller's labels.
    """
    keys = frame[[YEAR, MONTH]].drop_duplicates()
    keys = order_by_calendar(keys)
    grouped = dict(iter(frame.groupby([YEAR, MONTH], sort=False)))
    return [((y, m), grouped[(y, m)]) for y, m in keys.itertuples(index=False)]


def station_groups(frame: pd.DataFrame) -> List[Tuple[Hashable, pd.DataFrame]]:
    """Split *frame* by station, each group in calendar order."""
    return [(sid, order_by_calendar(g)) for sid, g in frame.groupby(ID, sort=True)]


# ---------------------------------------------------------------------
# Flat sequences exchanged with the per-location job
# ---------------------------------------------------------------------


def flatten_series(*columns: Iterable[float]) -> np.ndarray:
    """Interleave equal-length columns row by row into one flat array."""
    arr = np.column_stack([np.asarray(c, dtype=float) for c in columns])
    return arr.ravel()


def unflatten_series(flat: Sequence[float], ncol: int, *, key: Optional[Hashable] = None) -> np.ndarray:
    """Reshape a flat row-major sequence into an ``(n, ncol)`` float array."""
    try:
        arr = np.asarray(flat, dtype=float)
    except (TypeError, ValueError) as err:
        raise InputShapeError("Series contains non-numeric values.", key=key) from err
    if arr.ndim != 1:
        raise InputShapeError(f"Expected a flat sequence, got shape {arr.shape}.", key=key)
    if arr.size == 0 or arr.size % ncol != 0:
        raise InputShapeError(
            f"Flat series of length {arr.size} is not a multiple of {ncol}.", key=key
        )
    return arr.reshape(-1, ncol)


def series_to_records(
    frame: pd.DataFrame,
    *,
    key_col: str = ID,
    time_col: str = "date",
    value_col: str = "resp",
) -> Dict[Hashable, np.ndarray]:
    """Long table -> ``{key: flat (time, value) sequence}`` for the job.

    Time values must be numeric (or datetimes, converted to ``int64``
    nanoseconds); the row order within each key is irrelevant.
    """
    missing = [c for c in (key_col, time_col, value_col) if c not in frame.columns]
    if missing:
        raise InputShapeError(f"Input table is missing columns: {missing}")
    times = frame[time_col]
    if pd.api.types.is_datetime64_any_dtype(times):
        times = times.astype("int64")
    tmp = pd.DataFrame({"k": frame[key_col].values, "t": times.values, "v": frame[value_col].values})
    return {k: flatten_series(g["t"], g["v"]) for k, g in tmp.groupby("k", sort=True)}


def records_to_frame(
    inputs: Mapping[Hashable, Sequence[float]],
    outputs: Mapping[Hashable, Sequence[float]],
    *,
    key_col: str = ID,
    time_col: str = "date",
    value_col: str = "resp",
) -> pd.DataFrame:
    """Join job inputs and outputs into a long table.

    Output rows follow the ascending time order of each key's input, which
    is the order in which the job emits its ``(value, seasonal, trend)``
    triples. Keys without output are skipped.
    """
    parts: List[pd.DataFrame] = []
    for key, out in outputs.items():
        tv = unflatten_series(inputs[key], 2, key=key)
        tv = tv[np.argsort(tv[:, 0], kind="mergesort")]
        vst = unflatten_series(out, 3, key=key)
        if len(vst) != len(tv):
            raise InputShapeError(
                f"Output has {len(vst)} rows but input has {len(tv)}.", key=key
            )
        parts.append(
            pd.DataFrame(
                {
                    key_col: key,
                    time_col: tv[:, 0],
                    value_col: vst[:, 0],
                    "seasonal": vst[:, 1],
                    "trend": vst[:, 2],
                }
            )
        )
    if not parts:
        return pd.DataFrame(columns=[key_col, time_col, value_col, "seasonal", "trend"])
    return pd.concat(parts, ignore_index=True)


# ---------------------------------------------------------------------
# Station tables
# ---------------------------------------------------------------------


def normalize_stations(
    stations: pd.DataFrame,
    *,
    id_col: str = ID,
    lon_col: str = LON,
    lat_col: str = LAT,
    elev_col: str = ELEV,
    need_elevation: bool = False,
) -> pd.DataFrame:
    """Return a canonical ``station_id | lon | lat [| elev]`` table.

    Station ids ``1..N`` are assigned when *id_col* is absent. The elevation
    column is only read when *need_elevation* is true.
    """
    for c in (lon_col, lat_col):
        if c not in stations.columns:
            raise InputShapeError(f"Station table is missing column {c!r}.")
    if need_elevation and elev_col not in stations.columns:
        raise InputShapeError(f"Station table is missing column {elev_col!r}.")

    out = pd.DataFrame(index=range(len(stations)))
    if id_col in stations.columns:
        out[ID] = stations[id_col].values
    else:
        out[ID] = np.arange(1, len(stations) + 1)
    src = [(lon_col, LON), (lat_col, LAT)]
    if need_elevation:
        src.append((elev_col, ELEV))
    for c, name in src:
        out[name] = pd.to_numeric(stations[c], errors="coerce").values
    if out[[name for _, name in src]].isna().any().any():
        raise InputShapeError("Some station coordinates are missing or non-numeric.")
    if out.empty:
        raise InputShapeError("Station table is empty.")
    if out[ID].duplicated().any():
        raise InputShapeError("Duplicated station identifiers.")
    return out


def station_table(frame: pd.DataFrame, *, need_elevation: bool = False) -> pd.DataFrame:
    """One row per station from a canonical long table."""
    cols = [ID, LON, LAT] + ([ELEV] if need_elevation else [])
    return frame[cols].drop_duplicates(ID).reset_index(drop=True)


# ---------------------------------------------------------------------
# Table I/O
# ---------------------------------------------------------------------


def save_table(
    df: pd.DataFrame,
    path: Optional[str],
    *,
    parquet_compression: str = "snappy",
) -> Optional[str]:
    """Save *df* as CSV, Parquet or Feather depending on the extension.

    Returns the path, or ``None`` when *path* is ``None``.
    """
    if path is None:
        return None
    os.makedirs(os.path.dirname(str(path)) or ".", exist_ok=True)
    ext = os.path.splitext(str(path))[1].lower()
    if ext == ".csv":
        df.to_csv(path, index=False)
    elif ext == ".parquet":
        df.to_parquet(path, index=False, compression=parquet_compression)
    elif ext == ".feather":
        df.reset_index(drop=True).to_feather(path)
    else:
        raise ValueError(f"Unsupported extension: {ext}")
    return str(path)


__all__ = [
    "month_index",
    "order_by_calendar",
    "calendar_serial",
    "time_slices",
    "station_groups",
    "flatten_series",
    "unflatten_series",
    "series_to_records",
    "records_to_frame",
    "normalize_stations",
    "station_table",
    "save_table",
]
