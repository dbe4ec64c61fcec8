"""
Group and date-window eligibility for row pairs.

A pair (i, j), with i a row of the primary matrix and j a row of the
secondary matrix, is eligible when

    group[i] == group2[j]                                (if groups are given)
    left <= (date2[j] - date[i]) / unit_seconds <= right (if dates are given)

Both bounds of the window are inclusive. Without any constraint every pair
is eligible.

The index keeps two auxiliary structures over the secondary rows so that a
batch of primary rows can be narrowed to its candidates without scanning all
pairs: a dict from group label to sorted row indices, and the secondary
timestamps in sorted order (with the permutation back to row indices) for
binary-search range queries.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Hashable, Sequence

import numpy as np

from newsflow.config import SECONDS_PER_UNIT
from newsflow.errors import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class DateUnit(str, Enum):
    DAYS = "days"
    HOURS = "hours"
    MINUTES = "minutes"
    SECONDS = "seconds"

    @classmethod
    def parse(cls, value: str | DateUnit) -> DateUnit:
        try:
            return cls(value)
        except ValueError:
            options = ", ".join(u.value for u in cls)
            raise ConfigurationError(
                f"Unknown date_unit {value!r} (expected one of: {options})"
            ) from None

    @property
    def seconds(self) -> float:
        return SECONDS_PER_UNIT[self.value]


@dataclass(frozen=True)
class WindowSpec:
    """Inclusive time window [left, right] relative to the primary row's date."""

    left: float = -1.0
    right: float = 1.0
    unit: DateUnit = DateUnit.DAYS

    def __post_init__(self):
        object.__setattr__(self, "unit", DateUnit.parse(self.unit))
        if self.right < self.left:
            raise ValidationError(
                f"rwindow ({self.right}) must not be smaller than lwindow ({self.left})"
            )

    @property
    def left_seconds(self) -> float:
        return float(self.left) * self.unit.seconds

    @property
    def right_seconds(self) -> float:
        return float(self.right) * self.unit.seconds


def to_seconds(dates: Sequence[Any] | NDArray) -> NDArray[np.float64]:
    """
    Convert dates to float seconds.

    Accepts numbers (taken as seconds), numpy datetime64 values and
    ``datetime.datetime`` objects (naive values are read as UTC).
    """
    arr = np.asarray(dates)
    if arr.ndim != 1:
        raise ValidationError("date vectors must be one-dimensional")
    if np.issubdtype(arr.dtype, np.datetime64):
        return arr.astype("datetime64[ns]").astype(np.int64) / 1e9
    if np.issubdtype(arr.dtype, np.number):
        return arr.astype(np.float64)
    if arr.dtype == object and all(isinstance(d, dt.datetime) for d in arr):
        out = np.empty(len(arr), dtype=np.float64)
        for k, d in enumerate(arr):
            if d.tzinfo is None:
                d = d.replace(tzinfo=dt.timezone.utc)
            out[k] = d.timestamp()
        return out
    try:
        return arr.astype("datetime64[ns]").astype(np.int64) / 1e9
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Cannot interpret dates of dtype {arr.dtype}") from exc


def _check_length(name: str, values, expected: int) -> None:
    if len(values) != expected:
        raise ValidationError(
            f"{name} has length {len(values)}, but the matrix has {expected} rows"
        )


class WindowIndex:
    """Eligibility predicate over (primary row, secondary row) pairs."""

    def __init__(
        self,
        n_rows: int,
        n_rows2: int,
        group: list[Hashable] | None = None,
        group2: list[Hashable] | None = None,
        date: NDArray[np.float64] | None = None,
        date2: NDArray[np.float64] | None = None,
        window: WindowSpec | None = None,
    ):
        self.n_rows = n_rows
        self.n_rows2 = n_rows2
        self.group = group
        self.group2 = group2
        self.date = date
        self.date2 = date2
        self.window = window or WindowSpec()

        self._group_rows: dict[Hashable, NDArray[np.int64]] = {}
        if group2 is not None:
            members: dict[Hashable, list[int]] = defaultdict(list)
            for j, g in enumerate(group2):
                members[g].append(j)
            self._group_rows = {g: np.array(js, dtype=np.int64) for g, js in members.items()}
            # integer codes for vectorized comparisons
            codes = {g: k for k, g in enumerate(self._group_rows)}
            self._codes2 = np.array([codes[g] for g in group2], dtype=np.int64)
            self._codes = np.array([codes.get(g, -1) for g in group], dtype=np.int64)

        if date2 is not None:
            self._date_order = np.argsort(date2, kind="stable").astype(np.int64)
            self._sorted_dates2 = date2[self._date_order]

    @classmethod
    def build(
        cls,
        n_rows: int,
        n_rows2: int,
        group=None,
        group2=None,
        date=None,
        date2=None,
        window: WindowSpec | None = None,
        symmetric: bool = False,
    ) -> WindowIndex:
        """
        Validate the row metadata and build the index.

        Args:
            n_rows: Row count of the primary matrix
            n_rows2: Row count of the secondary matrix
            group, group2: Group labels per row (group2 defaults to group when
                the comparison is a self-comparison)
            date, date2: Dates per row (same defaulting as groups)
            window: Date window, used only when dates are given
            symmetric: True when no secondary matrix was supplied

        Raises:
            ValidationError: on missing or mis-sized metadata
        """
        if symmetric:
            if group2 is None:
                group2 = group
            if date2 is None:
                date2 = date
        if (group is None) != (group2 is None):
            raise ValidationError("group and group2 must both be given when comparing two matrices")
        if (date is None) != (date2 is None):
            raise ValidationError("date and date2 must both be given when comparing two matrices")

        if group is not None:
            group = list(group)
            group2 = list(group2)
            _check_length("group", group, n_rows)
            _check_length("group2", group2, n_rows2)
        if date is not None:
            date = to_seconds(date)
            date2 = to_seconds(date2)
            _check_length("date", date, n_rows)
            _check_length("date2", date2, n_rows2)

        index = cls(n_rows, n_rows2, group, group2, date, date2, window)
        logger.debug(
            "Built window index: groups=%s dates=%s window=%s",
            index.has_groups, index.has_dates, index.window,
        )
        return index

    @property
    def has_groups(self) -> bool:
        return self.group is not None

    @property
    def has_dates(self) -> bool:
        return self.date is not None

    @property
    def constrained(self) -> bool:
        return self.has_groups or self.has_dates

    def eligible(self, i: int, j: int) -> bool:
        if self.has_groups and self.group[i] != self.group2[j]:
            return False
        if self.has_dates:
            diff = self.date2[j] - self.date[i]
            if diff < self.window.left_seconds or diff > self.window.right_seconds:
                return False
        return True

    def eligible_block(
        self,
        rows: NDArray[np.int64],
        cols: NDArray[np.int64],
    ) -> NDArray[np.bool_]:
        """Boolean matrix (len(rows), len(cols)) of eligible pairs."""
        mask = np.ones((len(rows), len(cols)), dtype=bool)
        if self.has_groups:
            mask &= self._codes[rows][:, None] == self._codes2[cols][None, :]
        if self.has_dates:
            diff = self.date2[cols][None, :] - self.date[rows][:, None]
            mask &= (diff >= self.window.left_seconds) & (diff <= self.window.right_seconds)
        return mask

    def candidates(self, rows: NDArray[np.int64]) -> NDArray[np.int64]:
        """
        Secondary rows that may be eligible for at least one of ``rows``.

        A coarse superset: the union of the batch's groups, intersected with
        the secondary rows dated within [min(date) + left, max(date) + right].
        """
        if not self.constrained:
            return np.arange(self.n_rows2, dtype=np.int64)
        result: NDArray[np.int64] | None = None
        if self.has_groups:
            labels = {self.group[i] for i in rows.tolist()}
            parts = [self._group_rows[g] for g in labels if g in self._group_rows]
            if parts:
                result = np.unique(np.concatenate(parts))
            else:
                result = np.array([], dtype=np.int64)
        if self.has_dates and len(rows) > 0:
            batch_dates = self.date[rows]
            lo = batch_dates.min() + self.window.left_seconds
            hi = batch_dates.max() + self.window.right_seconds
            start = np.searchsorted(self._sorted_dates2, lo, side="left")
            end = np.searchsorted(self._sorted_dates2, hi, side="right")
            in_range = np.sort(self._date_order[start:end])
            if result is None:
                result = in_range
            else:
                result = np.intersect1d(result, in_range, assume_unique=True)
        if result is None:
            result = np.array([], dtype=np.int64)
        return result.astype(np.int64)


__all__ = ["DateUnit", "WindowSpec", "WindowIndex", "to_seconds"]
