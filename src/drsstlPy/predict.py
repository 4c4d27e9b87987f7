# src/drsstlPy/predict.py
# SPDX-License-Identifier: MIT
"""
Spatio-temporal fitting and prediction at new locations.

Two entry points:

1) :func:`fit_spacetime`
   Fits the historical stations: a spatial smoothing of the response for
   every ``(year, month)`` slice (in-sample fitted values), followed by the
   per-location seasonal-trend job on each station's smoothed series. The
   result is the table of historical fitted records (``spatial_fit``,
   ``seasonal``, ``trend``, ``remainder``).

2) :func:`predict_new_locations`
   Predicts the components at new locations from those records in three
   stages separated by barriers:

   A. :func:`first_spatial_smoothing`: one surface per time slice fitted on
      the historical response, evaluated at the new stations;
   B. :func:`temporal_fitting`: one decomposition per new station of its
      calendar-ordered ``spatial_fit`` series;
   C. :func:`second_spatial_smoothing`: one surface per time slice fitted
      on the remainder ``spatial_fit - trend - seasonal`` of historical and
      new stations together; the fitted values at the new stations are the
      ``spatial_correction``.

Within a stage the units of work (time slices or stations) run on a
:mod:`joblib` worker pool. By default the first failing unit aborts the
stage; with ``best_effort=True`` failed units are reported and their rows
kept with NaN components, so record counts never change.

The stage functions work on canonical column names
(``station_id | lon | lat | [elev | elev2] | year | month | ...``);
:func:`predict_new_locations` maps the caller's names in and out.
"""

from __future__ import annotations

from typing import Callable, Dict, Hashable, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from .config import ExecutionConfig, ModelConfig
from .decompose import decompose_series
from .exceptions import (
    ConfigurationError,
    DrsstlError,
    FailureReport,
    FitError,
    GroupFailure,
    InputShapeError,
    with_context,
)
from .reshape import (
    ELEV,
    ID,
    LAT,
    LON,
    MONTH,
    NEW,
    YEAR,
    calendar_serial,
    flatten_series,
    normalize_stations,
    save_table,
    station_groups,
    time_slices,
    unflatten_series,
)
from .stlfit import run_stlfit
from .surface import LocalSurfaceFitter

STAGE_SPATIAL = "spatial"
STAGE_TEMPORAL = "temporal"
STAGE_RESIDUAL = "residual"

COMPONENTS = ["spatial_fit", "seasonal", "trend"]


# ---------------------------------------------------------------------
# Parallel units of work
# ---------------------------------------------------------------------


def _unit_task(stage: str, func: Callable, key: Hashable, data, config: ModelConfig):
    try:
        return key, func(data, config), None
    except DrsstlError as err:
        return key, None, with_context(err, key=key, stage=stage)
    except np.linalg.LinAlgError as err:
        fail = FitError(f"Local regression failed: {err}", key=key, stage=stage)
        fail.__cause__ = err
        return key, None, fail


def _run_units(
    stage: str,
    func: Callable,
    units: Sequence[Tuple[Hashable, object]],
    config: ModelConfig,
    execution: ExecutionConfig,
    best_effort: bool,
    desc: str,
) -> Tuple[Dict[Hashable, object], FailureReport]:
    """Run *func* over every ``(key, data)`` unit; barrier on return."""
    tasks = tqdm(units, desc=desc, unit="grp", disable=not execution.show_progress)
    results = Parallel(**execution.parallel_kwargs())(
        delayed(_unit_task)(stage, func, key, data, config) for key, data in tasks
    )
    done: Dict[Hashable, object] = {}
    report = FailureReport()
    for key, out, err in results:
        if err is None:
            done[key] = out
        else:
            report.add(GroupFailure(stage, key, err))
    if report and not best_effort:
        report.raise_first()
    if report and execution.show_progress:
        tqdm.write(f"{stage}: {len(report)} of {len(units)} groups failed (kept as NaN)")
    return done, report


def _smooth_slice(data, config: ModelConfig) -> np.ndarray:
    group, targets = data
    y = group[config.vari].to_numpy(dtype=float)
    napred = bool(np.isnan(y).any())
    fitter = LocalSurfaceFitter.from_config(config, na_predict=napred).fit(group, y)
    if targets is None:
        return fitter.fitted_
    return fitter.predict(targets)


def _decompose_station(group: pd.DataFrame, config: ModelConfig):
    dec = decompose_series(group["spatial_fit"].to_numpy(dtype=float), config)
    return dec.seasonal, dec.trend, dec.remainder


def _smooth_remainder(group: pd.DataFrame, config: ModelConfig) -> np.ndarray:
    fitter = LocalSurfaceFitter.from_config(config, na_predict=False)
    fitter.fit(group, group["remainder"].to_numpy(dtype=float))
    return fitter.fitted_[group[NEW].to_numpy(dtype=bool)]


# ---------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------


def _prepare_records(
    data: pd.DataFrame,
    config: ModelConfig,
    *,
    id_col: str,
    lon_col: str,
    lat_col: str,
    elev_col: str,
    fitted: bool,
) -> pd.DataFrame:
    """Validate and rename a historical long table to canonical columns."""
    term = config.elevation
    required = [id_col, lon_col, lat_col, YEAR, MONTH, config.vari]
    if fitted:
        required += COMPONENTS
    if term.requires_elevation:
        required.append(elev_col)
    missing = [c for c in required if c not in data.columns]
    if missing:
        raise ConfigurationError(
            f"Historical records are missing columns {missing} (edeg={config.edeg})."
        )
    names = {id_col: ID, lon_col: LON, lat_col: LAT}
    if term.requires_elevation:
        names[elev_col] = ELEV
    out = data.rename(columns=names).reset_index(drop=True)
    if out[[YEAR, MONTH]].isna().any().any():
        raise InputShapeError("Historical records have missing year/month values.")
    if out[[LON, LAT]].isna().any().any():
        raise InputShapeError("Historical records have missing coordinates.")
    if term.requires_elevation and out[ELEV].isna().any():
        raise InputShapeError(f"Historical records have missing values in {elev_col!r}.")
    return term.transform(out, ELEV)


def _on_grid(values: pd.Series, positions: np.ndarray, size: int) -> np.ndarray:
    """Spread a station's values over the full monthly grid (NaN for absent months)."""
    out = np.full(size, np.nan)
    out[positions] = values.to_numpy(dtype=float)
    return out


def _restore_names(frame: pd.DataFrame, *, id_col: str, lon_col: str, lat_col: str, elev_col: str) -> pd.DataFrame:
    return frame.rename(columns={ID: id_col, LON: lon_col, LAT: lat_col, ELEV: elev_col})


# ---------------------------------------------------------------------
# Fitting of the historical stations
# ---------------------------------------------------------------------


def fit_spacetime(
    data: pd.DataFrame,
    config: ModelConfig,
    *,
    id_col: str = "station_id",
    lon_col: str = "lon",
    lat_col: str = "lat",
    elev_col: str = "elev",
    execution: Optional[ExecutionConfig] = None,
    best_effort: bool = False,
    out_path: Optional[str] = None,
) -> Union[pd.DataFrame, Tuple[pd.DataFrame, FailureReport]]:
    """Fit spatial and seasonal-trend components at the historical stations.

    Parameters
    ----------
    data :
        Long table with one row per (station, year, month) and columns
        ``[id_col, lon_col, lat_col, "year", "month", config.vari]`` plus
        ``elev_col`` when ``config.edeg != 0``. Missing responses are
        allowed; a station without a row for some month is decomposed on
        the full monthly grid with that month treated as missing.
    config :
        Smoothing parameters.
    execution :
        Worker-pool settings.
    best_effort :
        Keep failed slices/stations as NaN and return the failure report.
    out_path :
        Optional output table path.

    Returns
    -------
    DataFrame (or ``(DataFrame, FailureReport)`` when *best_effort*)
        The input rows in calendar order per station with the added columns
        ``spatial_fit``, ``seasonal``, ``trend`` and ``remainder``.
    """
    execution = execution or ExecutionConfig()
    cols = dict(id_col=id_col, lon_col=lon_col, lat_col=lat_col, elev_col=elev_col)
    records = _prepare_records(data, config, fitted=False, **cols)
    report = FailureReport()

    if execution.show_progress:
        tqdm.write("Spatial smoothing...")
    slices = time_slices(records)
    done, failed = _run_units(
        STAGE_SPATIAL,
        _smooth_slice,
        [(key, (g, None)) for key, g in slices],
        config,
        execution,
        best_effort,
        "Spatial smoothing",
    )
    report.extend(failed)
    parts = []
    for key, g in slices:
        g = g.copy()
        g["spatial_fit"] = done.get(key, np.nan)
        parts.append(g)
    smoothed = pd.concat(parts, ignore_index=True)

    if execution.show_progress:
        tqdm.write("Temporal fitting...")
    groups = station_groups(smoothed)
    serial = calendar_serial(smoothed)
    grid = np.arange(serial.min(), serial.max() + 1.0)
    positions = {}
    for sid, g in groups:
        pos = np.searchsorted(grid, calendar_serial(g))
        if (np.diff(pos) == 0).any():
            raise InputShapeError("Station has several records for the same month.", key=sid)
        positions[sid] = pos
    job = run_stlfit(
        {
            sid: flatten_series(grid, _on_grid(g["spatial_fit"], positions[sid], grid.size))
            for sid, g in groups
        },
        config,
        execution=execution,
    )
    if job.failures and not best_effort:
        job.failures.raise_first()
    report.extend(job.failures)

    parts = []
    for sid, g in groups:
        g = g.copy()
        if sid in job.outputs:
            vst = unflatten_series(job.outputs[sid], 3, key=sid)[positions[sid]]
            g["seasonal"] = vst[:, 1]
            g["trend"] = vst[:, 2]
        else:
            g["seasonal"] = np.nan
            g["trend"] = np.nan
        parts.append(g)
    fitted = pd.concat(parts, ignore_index=True)
    fitted["remainder"] = fitted["spatial_fit"] - fitted["seasonal"] - fitted["trend"]
    fitted = _restore_names(fitted.drop(columns=["elev2"], errors="ignore"), **cols)

    save_table(fitted, out_path)
    return (fitted, report) if best_effort else fitted


# ---------------------------------------------------------------------
# Stage A / B / C
# ---------------------------------------------------------------------


def first_spatial_smoothing(
    original: pd.DataFrame,
    newdata: pd.DataFrame,
    config: ModelConfig,
    *,
    execution: Optional[ExecutionConfig] = None,
    best_effort: bool = False,
) -> Tuple[pd.DataFrame, FailureReport]:
    """Stage A: per time slice, fit the historical response and evaluate it
    at the new stations.

    Returns one row per (new station, year, month) with ``spatial_fit``.
    """
    execution = execution or ExecutionConfig()
    slices = time_slices(original)
    done, report = _run_units(
        STAGE_SPATIAL,
        _smooth_slice,
        [(key, (g, newdata)) for key, g in slices],
        config,
        execution,
        best_effort,
        "First spatial smoothing",
    )
    parts = []
    for key, _ in slices:
        part = newdata.copy()
        part[YEAR] = key[0]
        part[MONTH] = key[1]
        part["spatial_fit"] = done.get(key, np.nan)
        parts.append(part)
    return pd.concat(parts, ignore_index=True), report


def temporal_fitting(
    stage_a: pd.DataFrame,
    config: ModelConfig,
    *,
    execution: Optional[ExecutionConfig] = None,
    best_effort: bool = False,
) -> Tuple[pd.DataFrame, FailureReport]:
    """Stage B: decompose each new station's calendar-ordered ``spatial_fit``.

    Adds ``seasonal``, ``trend`` and ``remainder``; rows come back grouped
    by station in calendar order.
    """
    execution = execution or ExecutionConfig()
    groups = station_groups(stage_a)
    done, report = _run_units(
        STAGE_TEMPORAL,
        _decompose_station,
        groups,
        config,
        execution,
        best_effort,
        "Temporal fitting",
    )
    parts = []
    for sid, g in groups:
        g = g.copy()
        seasonal, trend, remainder = done.get(sid, (np.nan, np.nan, np.nan))
        g["seasonal"] = seasonal
        g["trend"] = trend
        g["remainder"] = remainder
        parts.append(g)
    return pd.concat(parts, ignore_index=True), report


def second_spatial_smoothing(
    original: pd.DataFrame,
    stage_b: pd.DataFrame,
    config: ModelConfig,
    *,
    execution: Optional[ExecutionConfig] = None,
    best_effort: bool = False,
) -> Tuple[pd.DataFrame, FailureReport]:
    """Stage C: smooth the remainder of historical and new stations together.

    The remainder is recomputed as ``spatial_fit - trend - seasonal`` on the
    merged rows (historical remainders are never reused). Only new-station
    rows are returned, with ``spatial_correction`` and without the
    remainder.
    """
    execution = execution or ExecutionConfig()
    cols = [ID, LON, LAT]
    if config.elevation.requires_elevation:
        cols.append("elev2")
    cols += [YEAR, MONTH] + COMPONENTS

    merged = pd.concat(
        [original[cols].assign(**{NEW: False}), stage_b[cols].assign(**{NEW: True})],
        ignore_index=True,
    )
    merged["remainder"] = merged["spatial_fit"] - merged["trend"] - merged["seasonal"]

    slices = time_slices(merged)
    done, report = _run_units(
        STAGE_RESIDUAL,
        _smooth_remainder,
        slices,
        config,
        execution,
        best_effort,
        "Second spatial smoothing",
    )
    parts = []
    for key, g in slices:
        rows = g.loc[g[NEW].to_numpy(dtype=bool)].copy()
        rows["spatial_correction"] = done.get(key, np.nan)
        parts.append(rows)
    out = pd.concat(parts, ignore_index=True)
    return out.drop(columns=["remainder", NEW]), report


# ---------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------


def predict_new_locations(
    original: pd.DataFrame,
    newdata: pd.DataFrame,
    config: ModelConfig,
    *,
    id_col: str = "station_id",
    lon_col: str = "lon",
    lat_col: str = "lat",
    elev_col: str = "elev",
    execution: Optional[ExecutionConfig] = None,
    best_effort: bool = False,
    out_path: Optional[str] = None,
) -> Union[pd.DataFrame, Tuple[pd.DataFrame, FailureReport]]:
    """Predict spatial, seasonal, trend and correction terms at new stations.

    Parameters
    ----------
    original :
        Historical fitted records, e.g. from :func:`fit_spacetime`:
        ``[id_col, lon_col, lat_col, "year", "month", config.vari,
        "spatial_fit", "seasonal", "trend"]`` (+ ``elev_col`` if
        ``config.edeg != 0``).
    newdata :
        One row per new station with ``lon_col``, ``lat_col`` (+ ``elev_col``
        if ``config.edeg != 0``) and optionally ``id_col``; ids ``1..N`` are
        assigned when absent. Ids may coincide with historical ones.
    config :
        Smoothing parameters.
    execution :
        Worker-pool settings (``n_jobs``, backend, progress).
    best_effort :
        If true, failed slices/stations do not abort the run; their rows
        carry NaN and the failures are returned alongside the table.
    out_path :
        Optional output table path (``.csv``, ``.parquet``, ``.feather``).

    Returns
    -------
    DataFrame (or ``(DataFrame, FailureReport)`` when *best_effort*)
        One row per (new station, year, month) with ``spatial_fit``,
        ``seasonal``, ``trend`` and ``spatial_correction``. Combine them with
        :func:`compose_prediction`.
    """
    execution = execution or ExecutionConfig()
    cols = dict(id_col=id_col, lon_col=lon_col, lat_col=lat_col, elev_col=elev_col)
    term = config.elevation

    hist = _prepare_records(original, config, fitted=True, **cols)
    try:
        new = normalize_stations(
            newdata, need_elevation=term.requires_elevation, id_col=id_col,
            lon_col=lon_col, lat_col=lat_col, elev_col=elev_col,
        )
    except InputShapeError as err:
        if term.requires_elevation and elev_col not in newdata.columns:
            raise ConfigurationError(str(err)) from err
        raise
    new = term.transform(new, ELEV)

    report = FailureReport()
    if execution.show_progress:
        tqdm.write("First spatial smoothing...")
    stage_a, failed = first_spatial_smoothing(hist, new, config, execution=execution, best_effort=best_effort)
    report.extend(failed)

    if execution.show_progress:
        tqdm.write("Temporal fitting...")
    stage_b, failed = temporal_fitting(stage_a, config, execution=execution, best_effort=best_effort)
    report.extend(failed)

    if execution.show_progress:
        tqdm.write("Second spatial smoothing...")
    stage_c, failed = second_spatial_smoothing(hist, stage_b, config, execution=execution, best_effort=best_effort)
    report.extend(failed)

    out = _restore_names(stage_c, **cols)
    save_table(out, out_path)
    return (out, report) if best_effort else out


def compose_prediction(frame: pd.DataFrame) -> pd.Series:
    """Additive reconstruction ``seasonal + trend + spatial_correction``.

    ``seasonal + trend`` already decomposes ``spatial_fit``; do not add
    ``spatial_fit`` on top of this sum.
    """
    return (frame["seasonal"] + frame["trend"] + frame["spatial_correction"]).rename("prediction")


__all__ = [
    "fit_spacetime",
    "first_spatial_smoothing",
    "temporal_fitting",
    "second_spatial_smoothing",
    "predict_new_locations",
    "compose_prediction",
]
