# tests/test_surface.py
import warnings

import numpy as np
import pandas as pd
import pytest

from drsstlPy import InsufficientDataError, ModelConfig
from drsstlPy.surface import LocalSurfaceFitter


@pytest.fixture
def grid() -> pd.DataFrame:
    lon, lat = np.meshgrid(np.linspace(-100.0, -96.0, 5), np.linspace(30.0, 34.0, 5))
    rng = np.random.default_rng(3)
    return pd.DataFrame(
        {
            "lon": lon.ravel(),
            "lat": lat.ravel(),
            "elev2": np.log2(rng.uniform(0.0, 2000.0, size=25) + 128.0),
        }
    )


def _plane(df):
    return 2.0 + 0.5 * df["lon"].to_numpy() - 0.3 * df["lat"].to_numpy()


@pytest.mark.parametrize("surface", ["direct", "interpolate"])
@pytest.mark.parametrize("distance", ["latlong", "euclidean"])
def test_local_linear_reproduces_plane(grid, surface, distance):
    fitter = LocalSurfaceFitter(
        degree=1, span=0.5, family="gaussian", surface=surface, distance=distance
    ).fit(grid, _plane(grid))
    np.testing.assert_allclose(fitter.fitted_, _plane(grid), atol=1e-8)

    query = pd.DataFrame({"lon": [-98.3, -97.1], "lat": [31.2, 33.4]})
    np.testing.assert_allclose(fitter.predict(query), _plane(query), atol=1e-8)


def test_elevation_covariate_enters_parametrically(grid):
    y = _plane(grid) + 1.5 * grid["elev2"].to_numpy()
    fitter = LocalSurfaceFitter(
        ("lon", "lat", "elev2"), degree=1, span=0.6, family="gaussian", surface="direct"
    ).fit(grid, y)
    query = pd.DataFrame({"lon": [-98.0], "lat": [32.0], "elev2": [9.0]})
    np.testing.assert_allclose(fitter.predict(query), _plane(query) + 13.5, atol=1e-8)


def test_dropped_square_term():
    full = LocalSurfaceFitter(("lon", "lat", "elev2"), degree=2)
    linear_elev = LocalSurfaceFitter(("lon", "lat", "elev2"), degree=2, drop_square=("elev2",))
    assert len(full._terms) == 10
    assert len(linear_elev._terms) == 9
    assert (2, 2) not in linear_elev._terms


def test_from_config_uses_elevation_variant():
    fitter = LocalSurfaceFitter.from_config(ModelConfig(edeg=1, surf="direct"))
    assert fitter.predictors == ("lon", "lat", "elev2")
    assert fitter.drop_square == ("elev2",)
    assert fitter.surface == "direct"


def test_symmetric_family_downweights_outlier(grid):
    y = _plane(grid)
    center = 12
    y_out = y.copy()
    y_out[center] += 100.0

    kw = dict(degree=1, span=0.5, surface="direct", distance="euclidean")
    gauss = LocalSurfaceFitter(family="gaussian", **kw).fit(grid, y_out)
    robust = LocalSurfaceFitter(family="symmetric", iterations=4, **kw).fit(grid, y_out)

    neighbour = 13
    assert abs(robust.fitted_[neighbour] - y[neighbour]) < abs(gauss.fitted_[neighbour] - y[neighbour])


def test_missing_response_prediction_is_optional(grid):
    y = _plane(grid)
    y[4] = np.nan
    plain = LocalSurfaceFitter(degree=1, span=0.5, surface="direct").fit(grid, y)
    assert np.isnan(plain.fitted_[4])

    filled = LocalSurfaceFitter(degree=1, span=0.5, surface="direct", na_predict=True).fit(grid, y)
    assert filled.fitted_[4] == pytest.approx(_plane(grid)[4], abs=1e-8)


def test_single_location_is_insufficient():
    df = pd.DataFrame({"lon": [-99.0, -99.0], "lat": [19.0, 19.0]})
    with pytest.raises(InsufficientDataError):
        LocalSurfaceFitter(degree=1).fit(df, [1.0, 2.0])


def test_elevation_model_needs_three_locations():
    df = pd.DataFrame({"lon": [-99.0, -98.0], "lat": [19.0, 20.0], "elev2": [8.0, 9.0]})
    with pytest.raises(InsufficientDataError):
        LocalSurfaceFitter(("lon", "lat", "elev2"), degree=1).fit(df, [1.0, 2.0])


def test_small_span_warns(grid):
    with pytest.warns(RuntimeWarning, match="span too small"):
        LocalSurfaceFitter(degree=2, span=0.1, surface="direct").fit(grid, _plane(grid))


def test_predict_before_fit():
    with pytest.raises(RuntimeError):
        LocalSurfaceFitter().predict(pd.DataFrame({"lon": [0.0], "lat": [0.0]}))


def test_fitted_values_are_finite_for_tiny_networks():
    df = pd.DataFrame({"lon": [-100.0, -98.0, -96.5], "lat": [35.0, 36.5, 34.0]})
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        fitter = LocalSurfaceFitter(degree=2, span=0.75, family="symmetric", surface="interpolate")
        fitter.fit(df, [1.0, 2.0, 3.0])
        pred = fitter.predict(pd.DataFrame({"lon": [-98.5], "lat": [35.5]}))
    assert np.isfinite(fitter.fitted_).all()
    assert np.isfinite(pred).all()
