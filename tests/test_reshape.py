# tests/test_reshape.py
import numpy as np
import pandas as pd
import pytest

from drsstlPy import InputShapeError, records_to_frame, series_to_records
from drsstlPy.reshape import (
    calendar_serial,
    flatten_series,
    month_index,
    normalize_stations,
    order_by_calendar,
    save_table,
    station_groups,
    time_slices,
    unflatten_series,
)


@pytest.mark.parametrize("label", [3, "3", "03", "Mar", "mar", "March", " MARCH ", 3.0])
def test_month_index_accepts_common_labels(label):
    assert month_index(label) == 3


@pytest.mark.parametrize("label", ["Marzo", 0, 13, "", None, True, 2.5])
def test_month_index_rejects_unknown_labels(label):
    with pytest.raises(InputShapeError):
        month_index(label)


def test_order_by_calendar_is_not_alphabetical():
    df = pd.DataFrame({"year": [2000, 2000, 2000], "month": ["Mar", "Jan", "Feb"], "v": [3, 1, 2]})
    out = order_by_calendar(df)
    assert out["month"].tolist() == ["Jan", "Feb", "Mar"]
    assert out["v"].tolist() == [1, 2, 3]


def test_order_by_calendar_sorts_years_first():
    df = pd.DataFrame({"year": [2001, 2000, 2000], "month": ["Jan", "Dec", "Feb"]})
    out = order_by_calendar(df)
    assert list(zip(out["year"], out["month"])) == [(2000, "Feb"), (2000, "Dec"), (2001, "Jan")]


def test_calendar_serial_is_consecutive_across_years():
    df = pd.DataFrame({"year": [2000, 2001], "month": ["Dec", "Jan"]})
    s = calendar_serial(df)
    assert s[1] - s[0] == 1.0


def test_time_slices_preserve_rows_and_order():
    df = pd.DataFrame(
        {
            "station_id": ["a", "b", "a", "b", "a", "b"],
            "year": [2000] * 6,
            "month": ["Mar", "Mar", "Jan", "Jan", "Feb", "Feb"],
        }
    )
    slices = time_slices(df)
    assert [k for k, _ in slices] == [(2000, "Jan"), (2000, "Feb"), (2000, "Mar")]
    assert sum(len(g) for _, g in slices) == len(df)
    assert all(len(g) == 2 for _, g in slices)


def test_station_groups_are_calendar_ordered():
    df = pd.DataFrame(
        {
            "station_id": [2, 1, 2, 1],
            "year": [2000, 2000, 2000, 2000],
            "month": ["Feb", "Feb", "Jan", "Jan"],
        }
    )
    groups = station_groups(df)
    assert [sid for sid, _ in groups] == [1, 2]
    for _, g in groups:
        assert g["month"].tolist() == ["Jan", "Feb"]


def test_flatten_is_row_major():
    flat = flatten_series([1, 2], [10, 20], [100, 200])
    np.testing.assert_array_equal(flat, [1, 10, 100, 2, 20, 200])
    np.testing.assert_array_equal(unflatten_series(flat, 3)[:, 1], [10, 20])


def test_unflatten_rejects_odd_length():
    with pytest.raises(InputShapeError) as exc:
        unflatten_series([1.0, 2.0, 3.0], 2, key="k1")
    assert exc.value.key == "k1"


def test_unflatten_rejects_non_numeric():
    with pytest.raises(InputShapeError):
        unflatten_series([1.0, "abc"], 2)


def test_series_records_round_trip_to_frame():
    df = pd.DataFrame(
        {
            "station_id": ["s1", "s1", "s2"],
            "date": [2.0, 1.0, 5.0],
            "resp": [20.0, 10.0, 50.0],
        }
    )
    records = series_to_records(df)
    assert set(records) == {"s1", "s2"}
    # row order within a key is kept in the flat record
    np.testing.assert_array_equal(records["s1"], [2.0, 20.0, 1.0, 10.0])

    outputs = {"s1": flatten_series([10.0, 20.0], [1.0, 2.0], [9.0, 18.0])}
    table = records_to_frame(records, outputs)
    assert table["date"].tolist() == [1.0, 2.0]
    assert table["resp"].tolist() == [10.0, 20.0]
    assert set(table["station_id"]) == {"s1"}


def test_series_to_records_requires_columns():
    with pytest.raises(InputShapeError):
        series_to_records(pd.DataFrame({"station_id": [1]}))


def test_normalize_stations_assigns_ids():
    out = normalize_stations(pd.DataFrame({"lon": [-99.0, -98.0], "lat": [19.0, 20.0]}))
    assert out["station_id"].tolist() == [1, 2]
    assert list(out.columns) == ["station_id", "lon", "lat"]


def test_normalize_stations_reads_elevation_only_when_needed():
    st = pd.DataFrame({"lon": [-99.0], "lat": [19.0]})
    assert "elev" not in normalize_stations(st).columns
    with pytest.raises(InputShapeError):
        normalize_stations(st, need_elevation=True)


def test_normalize_stations_rejects_duplicates_and_missing_coordinates():
    with pytest.raises(InputShapeError):
        normalize_stations(pd.DataFrame({"station_id": [1, 1], "lon": [0.0, 1.0], "lat": [0.0, 1.0]}))
    with pytest.raises(InputShapeError):
        normalize_stations(pd.DataFrame({"lon": [0.0, np.nan], "lat": [0.0, 1.0]}))


def test_save_table_by_extension(tmp_path):
    df = pd.DataFrame({"a": [1, 2]})
    path = save_table(df, str(tmp_path / "out" / "t.csv"))
    assert pd.read_csv(path)["a"].tolist() == [1, 2]
    assert save_table(df, None) is None
    with pytest.raises(ValueError):
        save_table(df, str(tmp_path / "t.xlsx"))
