# src/drsstlPy/decompose.py
# SPDX-License-Identifier: MIT
"""
Seasonal-trend decomposition of one time-ordered series.

Thin layer over :class:`statsmodels.tsa.seasonal.STL` that

- resolves the configured windows (``"periodic"`` seasonal window, odd
  window sizes, classical default trend window),
- derives the jump (subsampling) strides used by the per-location job,
- bridges missing values for the solver, and
- turns solver failures into :class:`~drsstlPy.exceptions.FitError`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Hashable, Optional, Tuple

import numpy as np
import pandas as pd
from statsmodels.tsa.seasonal import STL

from .config import ModelConfig
from .exceptions import FitError, InsufficientDataError


def _next_odd(x: float) -> int:
    n = int(math.ceil(x))
    return n if n % 2 == 1 else n + 1


@dataclass(frozen=True)
class StlWindows:
    seasonal: int
    seasonal_deg: int
    trend: int
    trend_deg: int


@dataclass(frozen=True)
class Decomposition:
    """Additive components of one series (same length and order as input)."""

    seasonal: np.ndarray
    trend: np.ndarray
    remainder: np.ndarray


def resolve_windows(n_obs: int, config: ModelConfig) -> StlWindows:
    """Concrete (odd) seasonal/trend windows for a series of *n_obs* points."""
    if config.s_window == "periodic":
        seasonal = 10 * int(n_obs) + 1
        seasonal_deg = 0
    else:
        seasonal = _next_odd(config.s_window)
        seasonal_deg = config.s_degree
    if config.t_window is None:
        trend = _next_odd(1.5 * config.n_p / (1.0 - 1.5 / seasonal))
    else:
        trend = _next_odd(config.t_window)
    return StlWindows(seasonal, seasonal_deg, trend, config.t_degree)


def stl_jumps(windows: StlWindows, config: ModelConfig) -> Tuple[int, int]:
    """``(ceil(s_window / s_jump), ceil(t_window / t_jump))``."""
    s_jump = int(math.ceil(windows.seasonal / config.s_jump))
    t_jump = int(math.ceil(windows.trend / config.t_jump))
    return max(1, s_jump), max(1, t_jump)


def _bridge_missing(values: np.ndarray, period: int, key: Optional[Hashable]) -> np.ndarray:
    """Linearly interpolate missing points; reject hopeless series."""
    missing = ~np.isfinite(values)
    if not missing.any():
        return values
    if missing.all():
        raise InsufficientDataError("Every value of the series is missing.", key=key)
    for pos in range(period):
        if missing[pos::period].all():
            raise InsufficientDataError(
                f"All values at cycle position {pos + 1} of {period} are missing.",
                key=key,
            )
    s = pd.Series(np.where(missing, np.nan, values))
    return s.interpolate(limit_direction="both").to_numpy(dtype=float)


def decompose_series(
    values,
    config: ModelConfig,
    *,
    use_jumps: bool = False,
    key: Optional[Hashable] = None,
) -> Decomposition:
    """Decompose a time-ordered series into seasonal + trend + remainder.

    Parameters
    ----------
    values :
        Series values in ascending time order; NaN marks missing points.
    config :
        Smoothing parameters (``n_p``, windows, degrees, iterations).
    use_jumps :
        Subsample the seasonal/trend smoothers with the strides of
        :func:`stl_jumps` (per-location job only).
    key :
        Identifier reported in errors.

    Returns
    -------
    Decomposition
        ``remainder = values - seasonal - trend`` (NaN where *values* is
        missing).
    """
    y = np.asarray(values, dtype=float)
    period = int(config.n_p)
    if y.size < 2 * period:
        raise InsufficientDataError(
            f"Need at least two full periods ({2 * period} points), got {y.size}.",
            key=key,
        )
    filled = _bridge_missing(y, period, key)

    windows = resolve_windows(y.size, config)
    s_jump, t_jump = stl_jumps(windows, config) if use_jumps else (1, 1)
    try:
        res = STL(
            filled,
            period=period,
            seasonal=windows.seasonal,
            trend=windows.trend,
            seasonal_deg=windows.seasonal_deg,
            trend_deg=windows.trend_deg,
            robust=config.robust,
            seasonal_jump=s_jump,
            trend_jump=t_jump,
        ).fit(inner_iter=config.inner, outer_iter=config.outer)
    except (ValueError, np.linalg.LinAlgError) as err:
        raise FitError(f"Seasonal-trend decomposition failed: {err}", key=key) from err

    seasonal = np.asarray(res.seasonal, dtype=float)
    trend = np.asarray(res.trend, dtype=float)
    if not (np.isfinite(seasonal).all() and np.isfinite(trend).all()):
        raise FitError("Seasonal-trend decomposition produced non-finite components.", key=key)
    return Decomposition(seasonal=seasonal, trend=trend, remainder=y - seasonal - trend)


__all__ = [
    "StlWindows",
    "Decomposition",
    "resolve_windows",
    "stl_jumps",
    "decompose_series",
]
