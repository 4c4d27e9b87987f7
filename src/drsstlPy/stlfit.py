# src/drsstlPy/stlfit.py
# SPDX-License-Identifier: MIT
"""
Per-location seasonal-trend decomposition job.

Every location key carries a flat ``(time, value)`` sequence in arbitrary
row order. For each key independently the job

1. rebuilds the two-column table and sorts it by time,
2. decomposes the values with jump strides
   ``ceil(window / jump_ratio)`` for the seasonal and trend smoothers,
3. emits the flat row-major ``(value, seasonal, trend)`` sequence in the
   same ascending time order.

Keys are mapped over a :mod:`joblib` worker pool; they share no state and
a failing key never aborts the others (its error lands in the
:class:`~drsstlPy.exceptions.FailureReport` of the result).

Example
-------
    >>> from drsstlPy import ModelConfig, run_stlfit, series_to_records
    >>> cfg = ModelConfig(vari="tmax", time="date", n_p=12, t_window=241)
    >>> records = series_to_records(df, key_col="station_id",
    ...                             time_col="date", value_col="tmax")
    >>> result = run_stlfit(records, cfg)
    >>> table = result.to_frame()
"""

from __future__ import annotations

import time as _time
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from .config import ExecutionConfig, ModelConfig
from .decompose import decompose_series
from .exceptions import (
    DrsstlError,
    FailureReport,
    GroupFailure,
    InputShapeError,
    with_context,
)
from .reshape import flatten_series, records_to_frame, save_table, unflatten_series

STAGE = "stlfit"


def stlfit_map(key: Hashable, series: Sequence[float], config: ModelConfig) -> np.ndarray:
    """Decompose one location's flat ``(time, value)`` series.

    Returns the flat ``(value, seasonal, trend)`` sequence, one triple per
    time point in ascending time order.
    """
    tv = unflatten_series(series, 2, key=key)
    if not np.isfinite(tv[:, 0]).all():
        raise InputShapeError("Time values must be finite numbers.", key=key)
    tv = tv[np.argsort(tv[:, 0], kind="mergesort")]
    if (np.diff(tv[:, 0]) == 0).any():
        raise InputShapeError("Duplicated time points.", key=key)

    dec = decompose_series(tv[:, 1], config, use_jumps=True, key=key)
    return flatten_series(tv[:, 1], dec.seasonal, dec.trend)


def _stlfit_task(key: Hashable, series: Sequence[float], config: ModelConfig):
    try:
        return key, stlfit_map(key, series, config), None
    except DrsstlError as err:
        return key, None, with_context(err, key=key, stage=STAGE)


@dataclass
class StlfitResult:
    """Outputs of :func:`run_stlfit`, keyed like the input."""

    inputs: Dict[Hashable, Sequence[float]]
    outputs: Dict[Hashable, np.ndarray]
    failures: FailureReport = field(default_factory=FailureReport)
    config: Optional[ModelConfig] = None

    def to_frame(self, *, key_col: str = "station_id") -> pd.DataFrame:
        """Long ``key | time | value | seasonal | trend`` table."""
        time_col = self.config.time if self.config is not None else "date"
        value_col = self.config.vari if self.config is not None else "resp"
        return records_to_frame(
            self.inputs,
            self.outputs,
            key_col=key_col,
            time_col=time_col,
            value_col=value_col,
        )


def run_stlfit(
    records: Union[Mapping[Hashable, Sequence[float]], Iterable[Tuple[Hashable, Sequence[float]]]],
    config: ModelConfig,
    *,
    execution: Optional[ExecutionConfig] = None,
    out_path: Optional[str] = None,
    key_col: str = "station_id",
) -> StlfitResult:
    """Run :func:`stlfit_map` over every location key.

    Parameters
    ----------
    records :
        Mapping (or iterable of pairs) ``key -> flat (time, value) sequence``.
    config :
        Validated smoothing parameters.
    execution :
        Worker-pool settings; defaults to a single in-process worker.
    out_path :
        Optional ``.csv`` / ``.parquet`` / ``.feather`` path for the long
        output table.
    key_col :
        Name of the key column in the written table.

    Returns
    -------
    StlfitResult
        Per-key outputs plus the report of keys that failed.
    """
    execution = execution or ExecutionConfig()
    items = list(records.items()) if isinstance(records, Mapping) else list(records)
    t0 = _time.time()

    tasks = tqdm(
        items,
        desc="Decomposing locations",
        unit="key",
        disable=not execution.show_progress,
    )
    results = Parallel(**execution.parallel_kwargs())(
        delayed(_stlfit_task)(key, series, config) for key, series in tasks
    )

    result = StlfitResult(inputs=dict(items), outputs={}, config=config)
    for key, out, err in results:
        if err is None:
            result.outputs[key] = out
        else:
            result.failures.add(GroupFailure(STAGE, key, err))
            if execution.show_progress:
                tqdm.write(f"Location {key!r}: {err.detail} (skipped)")

    if out_path is not None:
        save_table(result.to_frame(key_col=key_col), out_path)

    if execution.show_progress:
        tqdm.write(
            f"Done. {len(result.outputs)}/{len(items)} locations decomposed "
            f"in {_time.time() - t0:.1f}s."
        )
    return result


__all__ = ["stlfit_map", "run_stlfit", "StlfitResult"]
