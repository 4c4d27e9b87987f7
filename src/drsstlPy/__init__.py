"""
drsstlPy
========

Spatial and seasonal-trend decomposition of station climate records, with
prediction of the components at new, unobserved locations.

A monthly value observed at many stations is split into a spatial fit
(local regression surface over longitude, latitude and optionally a
transformed elevation), a seasonal and a trend component (seasonal-trend
decomposition per station) and a spatially smoothed remainder.

The package provides three complementary workflows:

1. Per-location decomposition job
   -------------------------------
   An embarrassingly parallel map over location keys: every key's flat
   ``(time, value)`` series is re-sorted and decomposed independently,
   with failures isolated per key.

   Main entry points
   -----------------
   - :func:`stlfit_map`
   - :func:`run_stlfit`
   - :func:`series_to_records`

2. Fitting and prediction at new locations
   ---------------------------------------
   Fit the historical stations once, then predict spatial fit, seasonal,
   trend and spatial correction at any set of new stations through
   spatial → temporal → residual-spatial stages.

   Main entry points
   -----------------
   - :class:`ModelConfig`
   - :func:`fit_spacetime`
   - :func:`predict_new_locations`
   - :func:`compose_prediction`

3. Validation
   ----------
   Leave-one-station-out scores and decomposition plots.

   Main entry points
   -----------------
   - :func:`evaluate_stations`
   - :func:`loso_predict_station`
   - :func:`plot_decomposition`

Example
-------
    >>> from drsstlPy import ModelConfig, fit_spacetime, predict_new_locations
    >>> cfg = ModelConfig(vari="tmax", n_p=12, s_window="periodic",
    ...                   t_window=241, degree=2, span=0.75, edeg=0)
    >>> fitted = fit_spacetime(monthly, cfg)
    >>> preds = predict_new_locations(fitted, grid, cfg)
"""

from __future__ import annotations

# Public version (update in sync with pyproject.toml)
__version__ = "0.1.0"

from .config import (
    ExecutionConfig,
    LinearElevation,
    ModelConfig,
    NoElevation,
    QuadraticElevation,
    elevation_term,
)
from .exceptions import (
    ConfigurationError,
    DrsstlError,
    FailureReport,
    FitError,
    GroupFailure,
    InputShapeError,
    InsufficientDataError,
)

# ---------------------------------------------------------------------------
# Per-location job
# ---------------------------------------------------------------------------

from .reshape import records_to_frame, series_to_records
from .stlfit import StlfitResult, run_stlfit, stlfit_map

# ---------------------------------------------------------------------------
# Fitting / prediction
# ---------------------------------------------------------------------------

from .predict import (
    compose_prediction,
    first_spatial_smoothing,
    fit_spacetime,
    predict_new_locations,
    second_spatial_smoothing,
    temporal_fitting,
)

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

from .loso import evaluate_stations, loso_predict_station
from .plotting import plot_decomposition

__all__ = [
    "__version__",
    # configuration and errors
    "ModelConfig",
    "ExecutionConfig",
    "NoElevation",
    "LinearElevation",
    "QuadraticElevation",
    "elevation_term",
    "DrsstlError",
    "ConfigurationError",
    "InputShapeError",
    "InsufficientDataError",
    "FitError",
    "GroupFailure",
    "FailureReport",
    # per-location job
    "stlfit_map",
    "run_stlfit",
    "StlfitResult",
    "series_to_records",
    "records_to_frame",
    # fitting / prediction
    "fit_spacetime",
    "first_spatial_smoothing",
    "temporal_fitting",
    "second_spatial_smoothing",
    "predict_new_locations",
    "compose_prediction",
    # validation
    "evaluate_stations",
    "loso_predict_station",
    "plot_decomposition",
]
