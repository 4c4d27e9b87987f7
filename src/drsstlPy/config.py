# src/drsstlPy/config.py
# SPDX-License-Identifier: MIT
"""
Smoothing parameters and execution settings.

:class:`ModelConfig` holds every parameter shared by the spatial
(local-regression) and temporal (seasonal-trend) fits. It is validated once
at construction and never mutated afterwards; every fitting call receives
it explicitly.

The elevation covariate is resolved into one of three closed variants:

============  ==================  =================================
``edeg``      variant             predictors
============  ==================  =================================
0             NoElevation         lon, lat
1             LinearElevation     lon, lat, elev2 (no elev2 square)
2             QuadraticElevation  lon, lat, elev2
============  ==================  =================================

with ``elev2 = log2(elev + 128)``.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError


# ---------------------------------------------------------------------
# Elevation variants
# ---------------------------------------------------------------------


ELEV_OFFSET = 128.0


class ElevationTerm:
    """Predictor set and covariate transform for one ``edeg`` value."""

    degree: int = 0
    predictors: Tuple[str, ...] = ("lon", "lat")
    parametric: Tuple[str, ...] = ()
    drop_square: Tuple[str, ...] = ()

    @property
    def requires_elevation(self) -> bool:
        return self.degree != 0

    @property
    def covariates(self) -> Tuple[str, ...]:
        """Predictors that enter the local polynomial but not the distance."""
        return tuple(p for p in self.predictors if p not in ("lon", "lat"))

    @property
    def min_locations(self) -> int:
        return max(2, len(self.predictors))

    def transform(self, frame: pd.DataFrame, elev_col: str = "elev") -> pd.DataFrame:
        return frame

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self).__name__)


class NoElevation(ElevationTerm):
    pass


class _WithElevation(ElevationTerm):
    predictors = ("lon", "lat", "elev2")
    parametric = ("elev2",)

    def transform(self, frame: pd.DataFrame, elev_col: str = "elev") -> pd.DataFrame:
        if elev_col not in frame.columns:
            raise ConfigurationError(
                f"edeg={self.degree} requires an elevation column {elev_col!r}."
            )
        out = frame.copy()
        out["elev2"] = np.log2(out[elev_col].astype(float) + ELEV_OFFSET)
        return out


class LinearElevation(_WithElevation):
    degree = 1
    drop_square = ("elev2",)


class QuadraticElevation(_WithElevation):
    degree = 2


_ELEVATION_TERMS = {0: NoElevation, 1: LinearElevation, 2: QuadraticElevation}


def elevation_term(edeg: int) -> ElevationTerm:
    """Return the elevation variant for ``edeg`` in {0, 1, 2}."""
    try:
        return _ELEVATION_TERMS[int(edeg)]()
    except (KeyError, TypeError, ValueError):
        raise ConfigurationError(f"edeg must be 0, 1 or 2, got {edeg!r}.") from None


# ---------------------------------------------------------------------
# Model configuration
# ---------------------------------------------------------------------


# dotted names of the configuration surface -> field names
_ALIASES = {
    "n.p": "n_p",
    "s.window": "s_window",
    "s.degree": "s_degree",
    "t.window": "t_window",
    "t.degree": "t_degree",
    "s.jump": "s_jump",
    "t.jump": "t_jump",
    "Edeg": "edeg",
}


def _is_int(x: Any) -> bool:
    return isinstance(x, (int, np.integer)) and not isinstance(x, bool)


@dataclass(frozen=True)
class ModelConfig:
    """Smoothing parameters shared by every fit of a run.

    Attributes
    ----------
    vari, time :
        Response and time column names.
    n_p :
        Number of observations per seasonal period (12 for monthly data).
    s_window, s_degree :
        Seasonal smoothing window (odd integer or ``"periodic"``) and degree.
    t_window, t_degree :
        Trend smoothing window (odd integer larger than ``n_p``; ``None``
        selects the classical default) and degree.
    inner, outer :
        Inner and robustness iterations of the decomposition.
    s_jump, t_jump :
        Jump ratios; the per-location job subsamples its smoothers with
        strides ``ceil(window / ratio)``.
    degree, span, family :
        Local polynomial degree, neighbourhood fraction and robustness
        family (``"gaussian"`` or ``"symmetric"``) of the surface fits.
    edeg :
        Elevation covariate degree (0, 1 or 2).
    surf :
        ``"direct"`` or ``"interpolate"`` surface evaluation.
    siter, cell :
        Robustness iterations and cell fraction of the surface fitter.
    distance :
        ``"latlong"`` (great-circle) or ``"euclidean"``.
    """

    vari: str = "resp"
    time: str = "date"
    n_p: int = 12
    s_window: Union[int, str] = "periodic"
    s_degree: int = 1
    t_window: Optional[int] = None
    t_degree: int = 1
    inner: int = 2
    outer: int = 1
    s_jump: float = 10.0
    t_jump: float = 10.0
    degree: int = 2
    span: float = 0.75
    family: str = "symmetric"
    edeg: int = 0
    surf: str = "interpolate"
    siter: int = 2
    cell: float = 0.2
    distance: str = "latlong"
    elevation: ElevationTerm = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._validate()
        object.__setattr__(self, "elevation", elevation_term(self.edeg))

    # -----------------------------------------------------------------

    def _validate(self) -> None:
        def bad(msg: str) -> None:
            raise ConfigurationError(msg)

        if not self.vari or not isinstance(self.vari, str):
            bad("vari must be a non-empty column name.")
        if not _is_int(self.n_p) or self.n_p < 2:
            bad(f"n_p must be an integer >= 2, got {self.n_p!r}.")
        if isinstance(self.s_window, str):
            if self.s_window != "periodic":
                bad(f"s_window must be an integer or 'periodic', got {self.s_window!r}.")
        elif not _is_int(self.s_window) or self.s_window < 3:
            bad(f"s_window must be an integer >= 3, got {self.s_window!r}.")
        if self.s_degree not in (0, 1) or self.t_degree not in (0, 1):
            bad("s_degree and t_degree must be 0 or 1.")
        if self.t_window is not None:
            if not _is_int(self.t_window) or self.t_window <= self.n_p:
                bad(f"t_window must be an integer > n_p ({self.n_p}), got {self.t_window!r}.")
        if not _is_int(self.inner) or self.inner < 1:
            bad(f"inner must be a positive integer, got {self.inner!r}.")
        if not _is_int(self.outer) or self.outer < 0:
            bad(f"outer must be a non-negative integer, got {self.outer!r}.")
        if not (self.s_jump > 0 and self.t_jump > 0):
            bad("s_jump and t_jump ratios must be positive.")
        if self.degree not in (0, 1, 2):
            bad(f"degree must be 0, 1 or 2, got {self.degree!r}.")
        if not (float(self.span) > 0):
            bad(f"span must be positive, got {self.span!r}.")
        if self.family not in ("gaussian", "symmetric"):
            bad(f"family must be 'gaussian' or 'symmetric', got {self.family!r}.")
        if self.surf not in ("direct", "interpolate"):
            bad(f"surf must be 'direct' or 'interpolate', got {self.surf!r}.")
        if not _is_int(self.siter) or self.siter < 0:
            bad(f"siter must be a non-negative integer, got {self.siter!r}.")
        if not (float(self.cell) > 0):
            bad(f"cell must be positive, got {self.cell!r}.")
        if self.distance not in ("latlong", "euclidean"):
            bad(f"distance must be 'latlong' or 'euclidean', got {self.distance!r}.")
        # edeg is checked by elevation_term()

    # -----------------------------------------------------------------

    @property
    def robust(self) -> bool:
        return self.outer > 0

    def replace(self, **changes: Any) -> "ModelConfig":
        """Return a validated copy with some fields changed."""
        return ModelConfig.from_dict({**self.to_dict(), **changes})

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("elevation", None)
        return d

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> "ModelConfig":
        """Build a config from Python names or dotted names (``"n.p"``)."""
        names = {f.name for f in fields(cls) if f.init}
        kwargs: Dict[str, Any] = {}
        for raw, value in params.items():
            name = _ALIASES.get(raw, raw)
            if name not in names:
                raise ConfigurationError(f"Unknown configuration field {raw!r}.")
            kwargs[name] = value
        return cls(**kwargs)

    def save(self, path: str) -> None:
        """Save the configuration to a UTF-8 JSON file."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)

    @staticmethod
    def load(path: str) -> "ModelConfig":
        """Load a configuration saved with :meth:`save`."""
        with open(path, "r", encoding="utf-8") as f:
            return ModelConfig.from_dict(json.load(f))


# ---------------------------------------------------------------------
# Execution settings
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionConfig:
    """Worker-pool settings for the parallel steps.

    ``extra`` is forwarded untouched to :class:`joblib.Parallel`
    (e.g. ``{"max_nbytes": "1M"}``).
    """

    n_jobs: int = 1
    backend: Optional[str] = None
    show_progress: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict)

    def parallel_kwargs(self) -> Dict[str, Any]:
        kw: Dict[str, Any] = {"n_jobs": self.n_jobs}
        if self.backend is not None:
            kw["backend"] = self.backend
        kw.update(self.extra)
        return kw


__all__ = [
    "ModelConfig",
    "ExecutionConfig",
    "ElevationTerm",
    "NoElevation",
    "LinearElevation",
    "QuadraticElevation",
    "elevation_term",
]
