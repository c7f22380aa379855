"""
In-memory Dataframe of Records keyed by integer id.

Provides the narrow interface the clustering algorithms rely on: stable
record ids, get/set of a record by id, iteration, size, feature names and
subsets. Also hosts ``parse_record`` which turns a sparse Record into a dense
numpy vector using a feature index.
"""

from __future__ import annotations

import numbers
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import InvalidArgumentError
from .record import Record


class Dataframe:
    """
    Ordered collection of Records with stable integer ids.

    Ids are assigned incrementally on ``add`` and are never reused, so
    iteration order is insertion order. Records are immutable; updating a
    prediction means storing a new Record under the same id with ``set``.
    """

    def __init__(self, records: Optional[Iterable[Record]] = None):
        self._records: Dict[int, Record] = {}
        self._x_columns: Dict[Hashable, None] = {}
        self._next_id = 0
        if records is not None:
            for r in records:
                self.add(r)

    @classmethod
    def from_rows(
        cls,
        xs: Sequence[Any],
        ys: Optional[Sequence[Any]] = None,
    ) -> "Dataframe":
        """
        Build a Dataframe from raw rows.

        Each row may be a mapping (feature name -> value) or a sequence, in
        which case features are named by their position (0, 1, ...).

        Args:
            xs: Feature rows
            ys: Optional gold labels aligned with *xs*

        Returns:
            Dataframe

        Raises:
            ValueError: If *ys* is given with a different length than *xs*
        """
        if ys is not None and len(ys) != len(xs):
            raise ValueError(f"ys has {len(ys)} labels but xs has {len(xs)} rows")

        df = cls()
        for i, row in enumerate(xs):
            if isinstance(row, Mapping):
                x = dict(row)
            else:
                x = {j: v for j, v in enumerate(np.asarray(row).ravel().tolist())}
            df.add(Record(x=x, y=ys[i] if ys is not None else None))
        return df

    # ------------------------------------------------------------------
    # record access
    # ------------------------------------------------------------------

    def add(self, record: Record) -> int:
        """Append *record* and return its new id."""
        rid = self._next_id
        self._records[rid] = record
        self._next_id += 1
        for feature in record.x:
            self._x_columns.setdefault(feature, None)
        return rid

    def get(self, rid: int) -> Record:
        try:
            return self._records[rid]
        except KeyError:
            raise KeyError(f"No record with id {rid}") from None

    def set(self, rid: int, record: Record) -> None:
        """Replace the record stored under an existing id."""
        if rid not in self._records:
            raise KeyError(f"No record with id {rid}")
        self._records[rid] = record
        for feature in record.x:
            self._x_columns.setdefault(feature, None)

    def entries(self) -> Iterator[Tuple[int, Record]]:
        """Iterate ``(id, record)`` pairs in insertion order."""
        # Snapshot the keys so set() during iteration is safe.
        for rid in list(self._records):
            yield rid, self._records[rid]

    def ids(self) -> List[int]:
        return list(self._records)

    def __iter__(self) -> Iterator[Record]:
        for _, r in self.entries():
            yield r

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, rid: object) -> bool:
        return rid in self._records

    # ------------------------------------------------------------------
    # metadata & derived frames
    # ------------------------------------------------------------------

    @property
    def x_columns(self) -> List[Hashable]:
        """Feature names in first-seen order."""
        return list(self._x_columns)

    def x_column_size(self) -> int:
        return len(self._x_columns)

    def subset(self, ids: Iterable[int]) -> "Dataframe":
        """New Dataframe holding the given records (re-keyed from 0)."""
        return Dataframe(self.get(rid) for rid in ids)

    def copy(self) -> "Dataframe":
        return self.subset(self.ids())

    def labels(self) -> List[Any]:
        """Gold labels in id order."""
        return [r.y for r in self]

    def predictions(self) -> List[Any]:
        """Predicted cluster ids in id order."""
        return [r.y_predicted for r in self]


def parse_record(record: Record, feature_ids: Mapping[Hashable, int]) -> np.ndarray:
    """
    Convert a sparse Record into a dense vector.

    Args:
        record: Record to convert
        feature_ids: Feature name -> position

    Returns:
        1-D float array of length ``len(feature_ids)``; features absent from
        the record are 0 and features absent from the index are ignored.

    Raises:
        InvalidArgumentError: If a value is not numeric
    """
    v = np.zeros(len(feature_ids), dtype=np.float64)
    for feature, value in record.x.items():
        idx = feature_ids.get(feature)
        if idx is None:
            continue
        value = _numeric_value(feature, value)
        if value is not None:
            v[idx] = value
    return v


def check_numeric(record: Record) -> None:
    """
    Raises:
        InvalidArgumentError: If any feature value of *record* is not numeric
    """
    for feature, value in record.x.items():
        _numeric_value(feature, value)


def _numeric_value(feature: Hashable, value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if value is None:
        return None
    if not isinstance(value, numbers.Real):
        raise InvalidArgumentError(f"Feature {feature!r} has non-numeric value {value!r}")
    return float(value)
