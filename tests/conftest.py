# tests/conftest.py
import numpy as np
import pandas as pd
import pytest

import matplotlib
matplotlib.use("Agg", force=True)

from drsstlPy import ModelConfig


MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def make_monthly(stations, years=(2000, 2001), seed=0) -> pd.DataFrame:
    """
    Deterministic monthly records for a few stations.

    Columns:
        station_id | lon | lat | elev | year | month | tmax

    tmax = spatial gradient + 8 * annual sine + slow trend + small noise.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for sid, lon, lat, elev in stations:
        for y in years:
            for m, label in enumerate(MONTHS, start=1):
                t = (y - years[0]) * 12 + m - 1
                val = (
                    15.0
                    + 0.3 * (lon + 100.0)
                    - 0.5 * (lat - 35.0)
                    - 0.002 * elev
                    + 8.0 * np.sin(2.0 * np.pi * (m - 1) / 12.0)
                    + 0.02 * t
                    + 0.1 * rng.normal()
                )
                rows.append(
                    {
                        "station_id": sid,
                        "lon": lon,
                        "lat": lat,
                        "elev": elev,
                        "year": y,
                        "month": label,
                        "tmax": val,
                    }
                )
    return pd.DataFrame(rows)


THREE_STATIONS = [
    ("A", -100.0, 35.0, 300.0),
    ("B", -98.0, 36.5, 800.0),
    ("C", -96.5, 34.0, 1500.0),
]

FIVE_STATIONS = THREE_STATIONS + [
    ("D", -99.0, 37.5, 600.0),
    ("E", -97.0, 38.0, 1100.0),
]


@pytest.fixture
def three_station_data() -> pd.DataFrame:
    return make_monthly(THREE_STATIONS)


@pytest.fixture
def five_station_data() -> pd.DataFrame:
    return make_monthly(FIVE_STATIONS)


@pytest.fixture
def new_stations() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "station_id": ["N1", "N2"],
            "lon": [-98.5, -97.5],
            "lat": [35.5, 35.0],
            "elev": [500.0, 1000.0],
        }
    )


@pytest.fixture
def config() -> ModelConfig:
    return ModelConfig(vari="tmax", n_p=12)
