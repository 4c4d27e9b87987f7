# src/drsstlPy/plotting.py
# SPDX-License-Identifier: MIT
"""Decomposition plots for a single station."""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .reshape import calendar_serial, order_by_calendar


def plot_decomposition(
    frame: pd.DataFrame,
    *,
    station_id,
    id_col: str = "station_id",
    value_col: str = "spatial_fit",
    components: Sequence[str] = ("seasonal", "trend", "remainder"),
    figsize: Tuple[int, int] = (10, 8),
    title: Optional[str] = None,
    save_to: Optional[str] = None,
    line_style: Optional[Dict] = None,
) -> Tuple[matplotlib.figure.Figure, np.ndarray]:
    """Stacked panels of the value and its components for one station.

    Components missing from *frame* are skipped (e.g. ``remainder`` in the
    output of :func:`~drsstlPy.predict.predict_new_locations`). The x axis
    is fractional years in calendar order.
    """
    base = frame.loc[frame[id_col] == station_id]
    if base.empty:
        raise ValueError(f"No data for station {station_id}.")
    base = order_by_calendar(base)
    x = calendar_serial(base) / 12.0

    panels = [value_col] + [c for c in components if c in base.columns]
    style = {"lw": 1.5, "color": "#1E88E5", **(line_style or {})}

    fig, axes = plt.subplots(len(panels), 1, figsize=figsize, sharex=True, squeeze=False)
    axes = axes[:, 0]
    for ax, col in zip(axes, panels):
        if col == "remainder":
            ax.vlines(x, 0.0, base[col].to_numpy(dtype=float), color=style["color"], lw=1.0)
            ax.axhline(0.0, color="#37474F", lw=0.8)
        else:
            ax.plot(x, base[col].to_numpy(dtype=float), **style)
        ax.set_ylabel(col)
        ax.grid(True, alpha=0.3)
    axes[-1].set_xlabel("year")
    axes[0].set_title(title or f"Station {station_id}")
    fig.tight_layout()

    if save_to:
        fig.savefig(save_to, dpi=150, bbox_inches="tight")
    return fig, axes


__all__ = ["plot_decomposition"]
