# tests/test_plotting.py
import matplotlib
matplotlib.use("Agg", force=True)

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from drsstlPy import plot_decomposition


@pytest.fixture
def decomposed() -> pd.DataFrame:
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    t = np.arange(24)
    seasonal = np.sin(2 * np.pi * t / 12)
    trend = 0.1 * t
    return pd.DataFrame(
        {
            "station_id": 7,
            "year": 2000 + t // 12,
            "month": [months[i % 12] for i in t],
            "spatial_fit": seasonal + trend + 0.01,
            "seasonal": seasonal,
            "trend": trend,
            "remainder": 0.01,
        }
    )


def test_plot_decomposition_panels(decomposed, tmp_path):
    path = tmp_path / "dec.png"
    fig, axes = plot_decomposition(decomposed, station_id=7, save_to=str(path))
    assert len(axes) == 4
    assert [ax.get_ylabel() for ax in axes] == ["spatial_fit", "seasonal", "trend", "remainder"]
    assert path.exists()
    plt.close(fig)


def test_plot_skips_missing_components(decomposed):
    fig, axes = plot_decomposition(decomposed.drop(columns="remainder"), station_id=7)
    assert len(axes) == 3
    plt.close(fig)


def test_plot_unknown_station(decomposed):
    with pytest.raises(ValueError):
        plot_decomposition(decomposed, station_id=99)
