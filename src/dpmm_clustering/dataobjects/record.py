"""
Immutable data point stored in a Dataframe.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Hashable, Mapping, Optional


@dataclass(frozen=True)
class Record:
    """A feature vector plus its gold label and current prediction.

    Attributes:
        x: Sparse mapping of feature name -> value
        y: Optional gold-standard label (used for validation only)
        y_predicted: Predicted cluster id, or None when unassigned
        y_predicted_probabilities: Cluster id -> probability from the last prediction
    """

    x: Mapping[Hashable, Any]
    y: Optional[Any] = None
    y_predicted: Optional[Any] = None
    y_predicted_probabilities: Optional[Dict[Any, float]] = field(default=None, compare=False)

    def with_prediction(
        self,
        y_predicted: Any,
        y_predicted_probabilities: Optional[Dict[Any, float]] = None,
    ) -> "Record":
        """Return a copy carrying a new prediction; ``x`` and ``y`` are shared."""
        if y_predicted_probabilities is None:
            y_predicted_probabilities = self.y_predicted_probabilities
        return replace(
            self,
            y_predicted=y_predicted,
            y_predicted_probabilities=y_predicted_probabilities,
        )
