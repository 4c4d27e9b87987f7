# tests/test_stlfit.py
import numpy as np
import pandas as pd
import pytest

from drsstlPy import (
    ExecutionConfig,
    InputShapeError,
    InsufficientDataError,
    ModelConfig,
    run_stlfit,
    series_to_records,
    stlfit_map,
)
from drsstlPy.decompose import decompose_series
from drsstlPy.reshape import flatten_series, unflatten_series


@pytest.fixture
def job_config() -> ModelConfig:
    return ModelConfig(vari="tmax", time="date", n_p=12, t_window=25)


def _series(n=36, seed=0):
    rng = np.random.default_rng(seed)
    t = np.arange(n, dtype=float)
    v = 10.0 + 0.1 * t + 4.0 * np.cos(2 * np.pi * t / 12) + 0.2 * rng.normal(size=n)
    return t, v


def test_output_is_value_seasonal_trend_triples(job_config):
    t, v = _series()
    out = stlfit_map("s1", flatten_series(t, v), job_config)
    assert out.shape == (3 * len(t),)
    vst = unflatten_series(out, 3)
    np.testing.assert_array_equal(vst[:, 0], v)
    assert np.isfinite(vst).all()


def test_permuted_input_gives_identical_output(job_config):
    t, v = _series()
    perm = np.random.default_rng(7).permutation(len(t))
    sorted_out = stlfit_map("s1", flatten_series(t, v), job_config)
    permuted_out = stlfit_map("s1", flatten_series(t[perm], v[perm]), job_config)
    np.testing.assert_array_equal(sorted_out, permuted_out)


def test_job_uses_jump_strides():
    cfg = ModelConfig(vari="tmax", n_p=12, s_window=13, t_window=23)
    t, v = _series(n=48)
    vst = unflatten_series(stlfit_map("s1", flatten_series(t, v), cfg), 3)

    with_jumps = decompose_series(v, cfg, use_jumps=True)
    without_jumps = decompose_series(v, cfg, use_jumps=False)
    np.testing.assert_allclose(vst[:, 1], with_jumps.seasonal)
    np.testing.assert_allclose(vst[:, 2], with_jumps.trend)
    assert np.max(np.abs(vst[:, 2] - without_jumps.trend)) > 1e-6


def test_duplicated_time_points_are_rejected(job_config):
    t, v = _series()
    t[5] = t[4]
    with pytest.raises(InputShapeError):
        stlfit_map("s1", flatten_series(t, v), job_config)


def test_failures_are_isolated_per_key(job_config):
    t, v = _series()
    records = {
        "good": flatten_series(t, v),
        "odd": np.arange(7, dtype=float),
        "short": flatten_series(t[:10], v[:10]),
        "text": ["x", "y"],
    }
    result = run_stlfit(records, job_config)

    assert list(result.outputs) == ["good"]
    assert sorted(result.failures.keys("stlfit")) == ["odd", "short", "text"]
    errors = {f.key: f.error for f in result.failures}
    assert isinstance(errors["odd"], InputShapeError)
    assert isinstance(errors["text"], InputShapeError)
    assert isinstance(errors["short"], InsufficientDataError)
    assert errors["short"].key == "short"
    assert errors["short"].stage == "stlfit"


def test_worker_pool_matches_sequential_run(job_config):
    records = {f"s{i}": flatten_series(*_series(seed=i)) for i in range(4)}
    seq = run_stlfit(records, job_config)
    par = run_stlfit(records, job_config, execution=ExecutionConfig(n_jobs=2, backend="threading"))
    assert set(seq.outputs) == set(par.outputs)
    for key in seq.outputs:
        np.testing.assert_array_equal(seq.outputs[key], par.outputs[key])


def test_long_table_in_and_out(job_config, tmp_path):
    t, v = _series()
    df = pd.DataFrame({"station_id": "s1", "date": t[::-1], "tmax": v[::-1]})
    records = series_to_records(df, time_col="date", value_col="tmax")
    out_path = tmp_path / "stl.csv"
    result = run_stlfit(records, job_config, out_path=str(out_path))

    table = result.to_frame()
    assert list(table.columns) == ["station_id", "date", "tmax", "seasonal", "trend"]
    assert table["date"].is_monotonic_increasing
    np.testing.assert_allclose(table["tmax"], v)
    assert len(pd.read_csv(out_path)) == len(t)
