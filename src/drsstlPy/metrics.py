# src/drsstlPy/metrics.py
# SPDX-License-Identifier: MIT
"""
Scores for predictions at held-out stations and decomposition checks.

- :func:`nse`: Nash–Sutcliffe efficiency.
- :func:`regression_metrics`: MAE, RMSE, R² (squared Pearson correlation)
  and NSE in one dict.
- :func:`decomposition_gap`: largest violation of
  ``spatial_fit = seasonal + trend + remainder`` in a fitted table.

Missing pairs (NaN on either side) are dropped before scoring; undefined
scores are returned as ``numpy.nan``.
"""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error


_EMPTY = {"MAE": np.nan, "RMSE": np.nan, "R2": np.nan, "NSE": np.nan}


def _paired(y_true: Iterable[float], y_pred: Iterable[float]) -> Tuple[np.ndarray, np.ndarray]:
    yt = np.asarray(y_true, dtype=float)
    yp = np.asarray(y_pred, dtype=float)
    if yt.shape != yp.shape:
        raise ValueError(
            f"Shapes of y_true {yt.shape} and y_pred {yp.shape} do not match."
        )
    ok = np.isfinite(yt) & np.isfinite(yp)
    return yt[ok], yp[ok]


def nse(y_true: Iterable[float], y_pred: Iterable[float]) -> float:
    """Nash–Sutcliffe efficiency ``1 - SSE / SST``.

    NaN when fewer than two pairs remain or the observations are constant.
    """
    yt, yp = _paired(y_true, y_pred)
    if yt.size < 2:
        return np.nan
    sst = float(np.sum((yt - yt.mean()) ** 2))
    if sst == 0.0:
        return np.nan
    return float(1.0 - np.sum((yt - yp) ** 2) / sst)


def regression_metrics(y_true: Iterable[float], y_pred: Iterable[float]) -> Dict[str, float]:
    """MAE, RMSE, R² and NSE of *y_pred* against *y_true*.

    R² is the squared Pearson correlation, so a biased but perfectly
    correlated prediction still scores R² = 1 while NSE penalizes the bias.
    """
    yt, yp = _paired(y_true, y_pred)
    if yt.size == 0:
        return dict(_EMPTY)

    mae = float(mean_absolute_error(yt, yp))
    rmse = float(np.sqrt(mean_squared_error(yt, yp)))
    r2 = np.nan
    if yt.size >= 2 and np.std(yt) > 0 and np.std(yp) > 0:
        r = float(np.corrcoef(yt, yp)[0, 1])
        r2 = r * r if np.isfinite(r) else np.nan
    return {"MAE": mae, "RMSE": rmse, "R2": r2, "NSE": nse(yt, yp)}


def decomposition_gap(frame: pd.DataFrame) -> float:
    """Max ``|spatial_fit - seasonal - trend - remainder|`` over complete rows."""
    gap = frame["spatial_fit"] - frame["seasonal"] - frame["trend"] - frame["remainder"]
    gap = gap.abs().dropna()
    return float(gap.max()) if len(gap) else np.nan


__all__ = ["nse", "regression_metrics", "decomposition_gap"]
