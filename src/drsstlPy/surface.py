# src/drsstlPy/surface.py
# SPDX-License-Identifier: MIT
"""
Robust local polynomial surfaces over station coordinates.

:class:`LocalSurfaceFitter` fits one spatial slice (all stations for a
given ``(year, month)``) and evaluates the surface at query locations.

Model
-----
For an anchor location ``x0`` the ``q = floor(n * span)`` nearest stations
(great-circle or Euclidean distance on lon/lat) receive tricube weights
``(1 - (d / h)^3)^3``, with ``h`` the distance to the q-th neighbour
(inflated by ``span ** 0.5`` when ``span > 1``). A weighted least-squares
polynomial of total degree ``degree`` in ``(lon - lon0, lat - lat0)`` and
the conditionally-parametric covariates (``elev2``) is fitted and its value
at ``x0`` is the surface estimate. Covariates never enter the distance.
Squares of covariates listed in ``drop_square`` are left out.

``family="symmetric"`` re-fits ``iterations`` times with bisquare
robustness weights on the residuals.

Evaluation
----------
- ``surface="direct"``: one local fit per query point.
- ``surface="interpolate"``: local fits only at the vertices of a
  :class:`~sklearn.neighbors.KDTree` cell partition of the stations (cells of
  about ``n * span * cell`` points); a query is the inverse-distance blend
  of its nearest vertex polynomials, located through a second vertex
  index.
"""

from __future__ import annotations

import itertools
import warnings
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.neighbors import BallTree, KDTree

from .config import ModelConfig
from .exceptions import InsufficientDataError


# keep the q-th neighbour inside the kernel support
_BOUNDARY = 1.0 + 1e-3
_N_VERTEX_NEIGHBOURS = 4


def _tricube(u: np.ndarray) -> np.ndarray:
    u = np.clip(np.abs(u), 0.0, 1.0)
    return (1.0 - u ** 3) ** 3


def _bisquare(u: np.ndarray) -> np.ndarray:
    out = (1.0 - u ** 2) ** 2
    out[np.abs(u) >= 1.0] = 0.0
    return out


class LocalSurfaceFitter:
    """Local regression surface over (lon, lat) with optional covariates.

    Parameters
    ----------
    predictors :
        Column names; the first two are the spatial coordinates (lon, lat),
        the rest are conditionally-parametric covariates.
    degree, span :
        Local polynomial degree (0, 1 or 2) and neighbourhood fraction.
    family :
        ``"gaussian"`` (no robustness) or ``"symmetric"`` (bisquare).
    surface :
        ``"direct"`` or ``"interpolate"``.
    iterations :
        Robustness iterations for ``family="symmetric"``.
    cell :
        Cell fraction for ``surface="interpolate"``.
    distance :
        ``"latlong"`` (haversine) or ``"euclidean"``.
    drop_square :
        Covariates whose square term is excluded.
    na_predict :
        If true, :attr:`fitted_` carries surface predictions at rows whose
        response is missing; otherwise those entries are NaN.
    """

    def __init__(
        self,
        predictors: Sequence[str] = ("lon", "lat"),
        *,
        degree: int = 2,
        span: float = 0.75,
        family: str = "gaussian",
        surface: str = "direct",
        iterations: int = 4,
        cell: float = 0.2,
        distance: str = "latlong",
        drop_square: Sequence[str] = (),
        na_predict: bool = False,
    ) -> None:
        self.predictors = tuple(predictors)
        self.degree = int(degree)
        self.span = float(span)
        self.family = family
        self.surface = surface
        self.iterations = int(iterations)
        self.cell = float(cell)
        self.distance = distance
        self.drop_square = tuple(drop_square)
        self.na_predict = bool(na_predict)
        self._terms = self._build_terms()

    @classmethod
    def from_config(cls, config: ModelConfig, *, na_predict: bool = False) -> "LocalSurfaceFitter":
        term = config.elevation
        return cls(
            term.predictors,
            degree=config.degree,
            span=config.span,
            family=config.family,
            surface=config.surf,
            iterations=config.siter,
            cell=config.cell,
            distance=config.distance,
            drop_square=term.drop_square,
            na_predict=na_predict,
        )

    # -----------------------------------------------------------------
    # Design
    # -----------------------------------------------------------------

    def _build_terms(self) -> List[Tuple[int, ...]]:
        """Monomials as tuples of variable indices (``()`` is the intercept)."""
        nvar = len(self.predictors)
        dropped = {self.predictors.index(p) for p in self.drop_square if p in self.predictors}
        terms: List[Tuple[int, ...]] = [()]
        for d in range(1, self.degree + 1):
            for combo in itertools.combinations_with_replacement(range(nvar), d):
                if any(combo.count(v) > 1 for v in dropped):
                    continue
                terms.append(combo)
        return terms

    def _design(self, dxy: np.ndarray, cov: np.ndarray) -> np.ndarray:
        v = np.column_stack([dxy, cov]) if cov.shape[1] else dxy
        X = np.ones((v.shape[0], len(self._terms)))
        for j, combo in enumerate(self._terms):
            for var in combo:
                X[:, j] *= v[:, var]
        return X

    def _offsets(self, xy: np.ndarray, anchor: np.ndarray) -> np.ndarray:
        d = xy - anchor
        if self.distance == "latlong":
            d[:, 0] = (d[:, 0] + 180.0) % 360.0 - 180.0
        return d

    # -----------------------------------------------------------------
    # Spatial indexes
    # -----------------------------------------------------------------

    def _make_tree(self, xy: np.ndarray):
        if self.distance == "latlong":
            return BallTree(np.deg2rad(xy[:, ::-1]), metric="haversine")
        return KDTree(xy)

    def _neighbours(self, anchors: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        pts = np.deg2rad(anchors[:, ::-1]) if self.distance == "latlong" else anchors
        return self._tree.query(pts, k=self._q)

    def _build_vertices(self) -> None:
        n = self._xy.shape[0]
        leaf_size = max(1, int(np.floor(n * self.span * self.cell)))
        cells = KDTree(self._xy, leaf_size=leaf_size)
        _, _, node_data, node_bounds = cells.get_arrays()
        leaves = np.asarray(node_data["is_leaf"]).astype(bool)
        lo = node_bounds[0][leaves]
        hi = node_bounds[1][leaves]
        corners = [
            np.column_stack([lo[:, 0], lo[:, 1]]),
            np.column_stack([lo[:, 0], hi[:, 1]]),
            np.column_stack([hi[:, 0], lo[:, 1]]),
            np.column_stack([hi[:, 0], hi[:, 1]]),
        ]
        self.vertices_ = np.unique(np.vstack(corners), axis=0)
        self._vertex_tree = KDTree(self.vertices_)

    # -----------------------------------------------------------------
    # Local fits
    # -----------------------------------------------------------------

    def _local_coefficients(self, anchors: np.ndarray) -> np.ndarray:
        dist, idx = self._neighbours(anchors)
        coefs = np.empty((anchors.shape[0], len(self._terms)))
        for a in range(anchors.shape[0]):
            d, i = dist[a], idx[a]
            h = d.max()
            if self.span > 1.0:
                h *= self.span ** 0.5
            w = _tricube(d / (h * _BOUNDARY)) if h > 0 else np.ones_like(d)
            w = w * self._robust[i]
            X = self._design(self._offsets(self._xy[i], anchors[a]), self._cov[i])
            sw = np.sqrt(w)
            coefs[a] = np.linalg.lstsq(X * sw[:, None], self._y[i] * sw, rcond=None)[0]
        return coefs

    def _evaluate(self, xy: np.ndarray, cov: np.ndarray) -> np.ndarray:
        cov = cov - self._cov_center
        zero = np.zeros_like(xy)
        if self.surface == "direct":
            coefs = self._local_coefficients(xy)
            return np.einsum("ij,ij->i", self._design(zero, cov), coefs)

        k = min(_N_VERTEX_NEIGHBOURS, self.vertices_.shape[0])
        dist, idx = self._vertex_tree.query(xy, k=k)
        values = np.empty(dist.shape)
        for j in range(k):
            v = idx[:, j]
            X = self._design(self._offsets(xy, self.vertices_[v]), cov)
            values[:, j] = np.einsum("ij,ij->i", X, self._vertex_coefs[v])
        exact = dist[:, 0] == 0.0
        w = 1.0 / np.where(dist == 0.0, np.inf, dist) ** 2
        w[exact] = 0.0
        w[exact, 0] = 1.0
        return np.sum(values * w, axis=1) / np.sum(w, axis=1)

    def _refresh(self) -> np.ndarray:
        if self.surface == "interpolate":
            self._vertex_coefs = self._local_coefficients(self.vertices_)
        return self._evaluate(self._xy, self._cov + self._cov_center)

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def _covariates(self, frame: pd.DataFrame) -> np.ndarray:
        names = list(self.predictors[2:])
        if not names:
            return np.empty((len(frame), 0))
        return frame[names].to_numpy(dtype=float)

    def fit(self, frame: pd.DataFrame, y) -> "LocalSurfaceFitter":
        """Fit the surface to the rows of *frame* (predictor columns) and *y*."""
        xy_all = frame[list(self.predictors[:2])].to_numpy(dtype=float)
        cov_all = self._covariates(frame)
        y_all = np.asarray(y, dtype=float)
        keep = np.isfinite(y_all)

        n_loc = np.unique(xy_all[keep], axis=0).shape[0] if keep.any() else 0
        need = max(2, len(self.predictors))
        if n_loc < need:
            raise InsufficientDataError(
                f"{n_loc} distinct location(s) with data; the model on "
                f"{list(self.predictors)} needs at least {need}."
            )

        self._xy = xy_all[keep]
        self._y = y_all[keep]
        self._cov_center = cov_all[keep].mean(axis=0) if cov_all.shape[1] else np.empty(0)
        self._cov = cov_all[keep] - self._cov_center
        n = self._xy.shape[0]
        self._q = int(min(n, max(1, np.floor(n * self.span))))
        if self._q < len(self._terms):
            warnings.warn(
                f"span too small: {self._q} neighbours for {len(self._terms)} "
                "local polynomial terms.",
                RuntimeWarning,
                stacklevel=2,
            )
        self._tree = self._make_tree(self._xy)
        self._robust = np.ones(n)
        if self.surface == "interpolate":
            self._build_vertices()

        fitted = self._refresh()
        if self.family == "symmetric":
            for _ in range(self.iterations):
                resid = self._y - fitted
                scale = float(np.median(np.abs(resid)))
                if scale <= 0.0:
                    break
                self._robust = _bisquare(resid / (6.0 * scale))
                fitted = self._refresh()

        self.fitted_ = np.full(y_all.shape, np.nan)
        self.fitted_[keep] = fitted
        if self.na_predict and (~keep).any():
            self.fitted_[~keep] = self._evaluate(xy_all[~keep], cov_all[~keep])
        return self

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        """Evaluate the fitted surface at the rows of *frame*."""
        if not hasattr(self, "fitted_"):
            raise RuntimeError("LocalSurfaceFitter is not fitted yet.")
        xy = frame[list(self.predictors[:2])].to_numpy(dtype=float)
        return self._evaluate(xy, self._covariates(frame))


__all__ = ["LocalSurfaceFitter"]
