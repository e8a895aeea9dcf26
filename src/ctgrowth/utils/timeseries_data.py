#########################################################################################
##
##                        SUBJECT TIME SERIES CONSTRUCTION
##                            (utils/timeseries_data.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import re
from typing import Iterator, NamedTuple, Sequence

import numpy as np
import pandas as pd

from ..errors import InvalidRecord
from .logger import LoggerManager


_logger = LoggerManager().get_logger("data")


# OBSERVATION ===========================================================================

class Observation(NamedTuple):
    """Single measurement of one subject."""

    time: float
    value: float
    occasion: int


# CLASS =================================================================================

class SubjectSeries:

    """Ordered, missing-filtered observations of one subject.

    Stores the observation times (exact ages), the observed values and the
    index of the original measurement occasion each observation came from.
    Times are required to be non-negative and strictly increasing. The arrays
    are flagged read-only after construction.

    Parameters
    ----------
    time : array_like
        Observation times of shape (n,).
    data : array_like
        Observed values of shape (n,).
    occasion : array_like, optional
        Original occasion indices; defaults to ``0..n-1``.
    subject_id : hashable, optional
        Subject identifier used in diagnostics.

    Notes
    -----
    An empty series (``n == 0``) is valid and contributes nothing to a
    likelihood. Use :func:`build_subject_series` to construct series from
    raw wide-format rows.
    """

    def __init__(self, time, data, occasion=None, subject_id=None):
        t = np.array(time, dtype=float).reshape(-1)
        y = np.array(data, dtype=float).reshape(-1)

        if t.size != y.size:
            raise InvalidRecord(
                "SubjectSeries requires time and data with same length", subject_id
            )
        if occasion is None:
            occ = np.arange(t.size, dtype=int)
        else:
            occ = np.array(occasion, dtype=int).reshape(-1)
            if occ.size != t.size:
                raise InvalidRecord(
                    "SubjectSeries requires one occasion index per observation",
                    subject_id,
                )

        if not (np.all(np.isfinite(t)) and np.all(np.isfinite(y))):
            raise InvalidRecord("SubjectSeries requires finite times and values", subject_id)
        if t.size and t[0] < 0.0:
            raise InvalidRecord("SubjectSeries requires non-negative times", subject_id)
        if not np.all(np.diff(t) > 0):
            raise InvalidRecord("SubjectSeries requires strictly increasing time", subject_id)

        for arr in (t, y, occ):
            arr.setflags(write=False)

        self.time = t
        self.data = y
        self.occasion = occ
        self.subject_id = subject_id


    def __len__(self) -> int:
        return self.time.size


    def __iter__(self) -> Iterator[Observation]:
        for t, y, k in zip(self.time, self.data, self.occasion):
            yield Observation(float(t), float(y), int(k))


    def __repr__(self) -> str:
        return f"SubjectSeries(subject_id={self.subject_id!r}, n={len(self)})"


    @property
    def observations(self) -> list[Observation]:
        """Observations as a list of ``(time, value, occasion)`` tuples."""
        return list(self)


    @property
    def length(self) -> int:
        """Number of observations."""
        return self.time.size


    @property
    def is_empty(self) -> bool:
        return self.time.size == 0


    @property
    def duration(self) -> float:
        """Time between first and last observation (0 for fewer than 2)."""
        if self.time.size < 2:
            return 0.0
        return float(self.time[-1] - self.time[0])


# BUILDERS ==============================================================================

def _missing_mask(arr: np.ndarray, missing: Sequence[float] | None) -> np.ndarray:
    """True where an entry is NaN or equals one of the extra missing markers."""
    mask = np.isnan(arr)
    if missing:
        for marker in missing:
            mask |= arr == float(marker)
    return mask


def build_subject_series(
    values,
    ages,
    *,
    subject_id=None,
    missing: Sequence[float] | None = None,
    allow_empty: bool = False,
) -> SubjectSeries:
    """Convert one subject's wide-format row into a :class:`SubjectSeries`.

    Parameters
    ----------
    values : array_like
        Observed value per measurement occasion. ``None`` and ``NaN`` mark
        missing entries.
    ages : array_like
        Exact observation age per measurement occasion, same length as
        ``values``.
    subject_id : hashable, optional
        Identifier attached to the series and to error messages.
    missing : sequence of float, optional
        Additional numeric markers treated as missing (e.g. ``[-99]``).
    allow_empty : bool
        Return an empty series instead of raising when no occasion is valid.

    Returns
    -------
    SubjectSeries

    Raises
    ------
    InvalidRecord
        If the vectors differ in length, contain non-numeric entries, if the
        valid ages are not strictly increasing and non-negative, or if no
        occasion is valid and ``allow_empty`` is ``False``.
    """
    try:
        y = np.asarray(values, dtype=float).reshape(-1)
        t = np.asarray(ages, dtype=float).reshape(-1)
    except (TypeError, ValueError) as err:
        raise InvalidRecord(f"non-numeric entry ({err})", subject_id) from err

    if y.size != t.size:
        raise InvalidRecord(
            f"{y.size} values but {t.size} ages; vectors must have the same length",
            subject_id,
        )

    keep = ~(_missing_mask(y, missing) | _missing_mask(t, missing))
    occasion = np.flatnonzero(keep)

    if occasion.size == 0 and not allow_empty:
        raise InvalidRecord("no valid observations", subject_id)

    return SubjectSeries(
        time=t[keep], data=y[keep], occasion=occasion, subject_id=subject_id
    )


def _indexed_columns(columns, prefix: str) -> dict[int, str]:
    """Map occasion index -> column name for columns named ``<prefix><int>``."""
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    found = {}
    for col in columns:
        match = pattern.match(str(col))
        if match:
            found[int(match.group(1))] = col
    return found


def build_panel(
    table: pd.DataFrame,
    *,
    value_prefix: str = "oy",
    age_prefix: str = "age",
    n_occasions: int | None = None,
    missing: Sequence[float] | None = None,
    drop_empty: bool = True,
) -> list[SubjectSeries]:
    """Build one :class:`SubjectSeries` per row of a wide-format table.

    Parameters
    ----------
    table : pandas.DataFrame
        One row per subject; the index provides subject ids. Columns
        ``<value_prefix>0..K`` hold observed values and ``<age_prefix>0..K``
        the matching exact ages.
    value_prefix, age_prefix : str
        Column name prefixes.
    n_occasions : int, optional
        Use only occasions ``0..n_occasions-1``; all discovered occasions by
        default.
    missing : sequence of float, optional
        Additional missing-value markers.
    drop_empty : bool
        Drop subjects without any valid observation (logged). When ``False``
        they are kept as empty series.

    Returns
    -------
    list[SubjectSeries]

    Raises
    ------
    InvalidRecord
        If value and age columns do not pair up, or any row is malformed.
    """
    if not isinstance(table, pd.DataFrame):
        raise TypeError(f"build_panel expects a pandas DataFrame, got {type(table).__name__}")

    value_cols = _indexed_columns(table.columns, value_prefix)
    age_cols = _indexed_columns(table.columns, age_prefix)

    if not value_cols:
        raise InvalidRecord(f"no columns with prefix {value_prefix!r}")
    if set(value_cols) != set(age_cols):
        unpaired = sorted(set(value_cols) ^ set(age_cols))
        raise InvalidRecord(
            f"value and age columns do not pair up; unmatched occasions {unpaired}"
        )

    occasions = sorted(value_cols)
    if n_occasions is not None:
        occasions = [k for k in occasions if k < n_occasions]

    try:
        values = table[[value_cols[k] for k in occasions]].apply(pd.to_numeric)
        ages = table[[age_cols[k] for k in occasions]].apply(pd.to_numeric)
    except (TypeError, ValueError) as err:
        raise InvalidRecord(f"non-numeric entry in wide table ({err})") from err
    occasion_index = np.asarray(occasions, dtype=int)

    panel: list[SubjectSeries] = []
    dropped = []
    for subject_id, y_row, t_row in zip(
        table.index, values.to_numpy(dtype=float), ages.to_numpy(dtype=float)
    ):
        series = build_subject_series(
            y_row, t_row, subject_id=subject_id, missing=missing, allow_empty=True
        )
        if series.is_empty and drop_empty:
            dropped.append(subject_id)
            continue
        panel.append(
            SubjectSeries(
                time=series.time,
                data=series.data,
                occasion=occasion_index[series.occasion],
                subject_id=subject_id,
            )
        )

    if dropped:
        _logger.warning(
            "dropped %d subject(s) without valid observations: %s",
            len(dropped), dropped,
        )

    return panel
