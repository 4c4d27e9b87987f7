# src/drsstlPy/loso.py
# SPDX-License-Identifier: MIT
"""
Leave-One-Station-Out (LOSO) validation of predictions at new locations.

Each selected historical station is removed from the fitted records,
treated as a new location, predicted from the remaining stations with
:func:`~drsstlPy.predict.predict_new_locations`, and scored against its
own observed response.

The fitted records are usually produced once by
:func:`~drsstlPy.predict.fit_spacetime` on the full network; the held-out
station therefore still contributed to the neighbours' historical fits.
"""

from __future__ import annotations

import time
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from .config import ExecutionConfig, ModelConfig
from .exceptions import DrsstlError
from .metrics import regression_metrics
from .predict import compose_prediction, predict_new_locations
from .reshape import save_table


def loso_predict_station(
    original: pd.DataFrame,
    station_id,
    config: ModelConfig,
    *,
    id_col: str = "station_id",
    lon_col: str = "lon",
    lat_col: str = "lat",
    elev_col: str = "elev",
    execution: Optional[ExecutionConfig] = None,
) -> pd.DataFrame:
    """Predict one held-out station from all the others.

    Returns the held-out station's rows with ``y_true`` (its observed
    ``config.vari``), ``y_pred`` (:func:`compose_prediction`) and the
    predicted components.
    """
    is_target = original[id_col] == station_id
    if not is_target.any():
        raise ValueError(f"No rows for station {station_id}.")
    target = original.loc[is_target]
    train = original.loc[~is_target]

    coords = [lon_col, lat_col]
    if config.elevation.requires_elevation:
        coords.append(elev_col)
    newdata = target[[id_col] + coords].drop_duplicates(id_col).reset_index(drop=True)

    pred = predict_new_locations(
        train,
        newdata,
        config,
        id_col=id_col,
        lon_col=lon_col,
        lat_col=lat_col,
        elev_col=elev_col,
        execution=execution,
    )
    pred = pred.assign(y_pred=compose_prediction(pred))
    obs = target[["year", "month", config.vari]].rename(columns={config.vari: "y_true"})
    keep = [id_col, "year", "month", "spatial_fit", "seasonal", "trend", "spatial_correction", "y_pred"]
    return obs.merge(pred[keep], on=["year", "month"], how="inner")


def evaluate_stations(
    original: pd.DataFrame,
    config: ModelConfig,
    *,
    station_ids: Optional[Iterable] = None,
    id_col: str = "station_id",
    lon_col: str = "lon",
    lat_col: str = "lat",
    elev_col: str = "elev",
    execution: Optional[ExecutionConfig] = None,
    show_progress: bool = True,
    save_table_path: Optional[str] = None,
) -> pd.DataFrame:
    """LOSO scores for every selected station.

    Stations whose prediction fails (e.g. too few neighbours for a time
    slice) are reported with NaN scores and the error message instead of
    aborting the evaluation.

    Returns
    -------
    DataFrame
        One row per station: ``station``, ``n_rows``, ``seconds``, ``MAE``,
        ``RMSE``, ``R2``, ``NSE``, coordinates and ``error``.
    """
    t_all0 = time.time()
    if station_ids is None:
        stations = sorted(original[id_col].dropna().unique().tolist())
    else:
        stations = list(station_ids)

    centroids = original.groupby(id_col)[[lon_col, lat_col]].median()
    rows: List[Dict] = []
    iterator = tqdm(stations, desc="Evaluating stations", unit="st") if show_progress else stations

    for sid in iterator:
        t0 = time.time()
        row: Dict = {"station": sid, "n_rows": 0, "error": None}
        try:
            pred = loso_predict_station(
                original,
                sid,
                config,
                id_col=id_col,
                lon_col=lon_col,
                lat_col=lat_col,
                elev_col=elev_col,
                execution=execution,
            )
        except DrsstlError as err:
            row.update({"MAE": np.nan, "RMSE": np.nan, "R2": np.nan, "NSE": np.nan})
            row["error"] = str(err)
            if show_progress:
                tqdm.write(f"Station {sid}: {err} (skipped)")
        else:
            row.update(regression_metrics(pred["y_true"], pred["y_pred"]))
            row["n_rows"] = int(pred["y_true"].notna().sum())
        row["seconds"] = time.time() - t0
        if sid in centroids.index:
            row[lon_col] = float(centroids.loc[sid, lon_col])
            row[lat_col] = float(centroids.loc[sid, lat_col])
        rows.append(row)

        if show_progress and row["error"] is None:
            tqdm.write(f"Station {sid}: {row['seconds']:.2f}s  (rows={row['n_rows']:,})")

    cols = ["station", "n_rows", "seconds", "MAE", "RMSE", "R2", "NSE", lon_col, lat_col, "error"]
    result_df = pd.DataFrame(rows).reindex(columns=cols)
    save_table(result_df, save_table_path)

    if show_progress:
        total_sec = time.time() - t_all0
        tqdm.write(
            f"Done. {len(stations)} stations in {total_sec:.1f}s "
            f"(avg {total_sec / max(1, len(stations)):.2f}s/station)."
        )
    return result_df


__all__ = ["loso_predict_station", "evaluate_stations"]
