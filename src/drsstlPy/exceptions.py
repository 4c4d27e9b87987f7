# src/drsstlPy/exceptions.py
# SPDX-License-Identifier: MIT
"""
Error taxonomy shared by the per-location job and the predictor.

- :class:`ConfigurationError`: invalid smoothing parameters or missing
  columns for the selected elevation mode (raised before any fitting).
- :class:`InputShapeError`: malformed flattened series or station tables.
- :class:`InsufficientDataError`: too few time points or locations for the
  requested model.
- :class:`FitError`: the surface fitter or the decomposer failed internally.

Data errors carry the offending ``key`` (location key, ``(year, month)``
tuple or station id) and the ``stage`` that raised them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, Iterator, List, Optional

import pandas as pd


class DrsstlError(Exception):
    """Base class for every error raised by drsstlPy."""

    def __init__(
        self,
        message: str,
        *,
        key: Optional[Hashable] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.key = key
        self.stage = stage
        self.detail = message
        parts = []
        if stage is not None:
            parts.append(f"[{stage}]")
        if key is not None:
            parts.append(f"key={key!r}:")
        parts.append(message)
        super().__init__(" ".join(parts))

    def __reduce__(self):
        # keep key/stage when errors travel back from worker processes
        return (_rebuild_error, (type(self), self.detail, self.key, self.stage))


def _rebuild_error(cls, detail, key, stage):
    return cls(detail, key=key, stage=stage)


def with_context(err: "DrsstlError", *, key: Optional[Hashable], stage: str) -> "DrsstlError":
    """Copy of *err* tagged with the unit of work that raised it."""
    out = type(err)(
        err.detail,
        key=err.key if err.key is not None else key,
        stage=err.stage or stage,
    )
    out.__cause__ = err.__cause__ or err
    return out


class ConfigurationError(DrsstlError, ValueError):
    pass


class InputShapeError(DrsstlError, ValueError):
    pass


class InsufficientDataError(DrsstlError, ValueError):
    pass


class FitError(DrsstlError, RuntimeError):
    pass


@dataclass(frozen=True)
class GroupFailure:
    """One isolated failure: the stage, the unit of work and the error."""

    stage: str
    key: Hashable
    error: BaseException

    def as_row(self) -> dict:
        return {
            "stage": self.stage,
            "key": self.key,
            "error": type(self.error).__name__,
            "message": str(self.error),
        }


class FailureReport:
    """Collection of :class:`GroupFailure` records for a run."""

    def __init__(self, failures: Optional[List[GroupFailure]] = None) -> None:
        self._failures: List[GroupFailure] = list(failures or [])

    def add(self, failure: GroupFailure) -> None:
        self._failures.append(failure)

    def extend(self, other: "FailureReport") -> None:
        self._failures.extend(other)

    def keys(self, stage: Optional[str] = None) -> List[Any]:
        return [f.key for f in self._failures if stage is None or f.stage == stage]

    def raise_first(self) -> None:
        """Re-raise the first recorded error (no-op on an empty report)."""
        if self._failures:
            raise self._failures[0].error

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [f.as_row() for f in self._failures],
            columns=["stage", "key", "error", "message"],
        )

    def __iter__(self) -> Iterator[GroupFailure]:
        return iter(self._failures)

    def __len__(self) -> int:
        return len(self._failures)

    def __bool__(self) -> bool:
        return bool(self._failures)

    def __repr__(self) -> str:
        return f"FailureReport({len(self._failures)} failures)"


__all__ = [
    "DrsstlError",
    "ConfigurationError",
    "InputShapeError",
    "InsufficientDataError",
    "FitError",
    "GroupFailure",
    "with_context",
    "FailureReport",
]
