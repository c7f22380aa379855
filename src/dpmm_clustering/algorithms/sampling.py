"""
Weighted random sampling over a discrete distribution.
"""

from __future__ import annotations

from typing import Hashable, List, Mapping, Optional

import numpy as np

from ..exceptions import InvalidArgumentError


def weighted_sampling(
    weights: Mapping[Hashable, float],
    n: int,
    with_replacement: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> List[Hashable]:
    """
    Draw *n* keys from ``weights`` with probability proportional to their weight.

    Weights are unnormalized: any non-negative values with a positive sum are
    accepted. Keys with zero weight are never drawn.

    Args:
        weights: Mapping of key -> non-negative weight
        n: Number of draws
        with_replacement: If False, keys are distinct and at most the number
            of keys with positive weight are returned
        rng: NumPy random generator (a fresh unseeded one if None)

    Returns:
        List of sampled keys in draw order

    Raises:
        InvalidArgumentError: If *weights* is empty, contains a negative or
            non-finite weight, sums to zero, or *n* is negative
    """
    if n < 0:
        raise InvalidArgumentError(f"n must be >= 0, got {n}")
    if not weights:
        raise InvalidArgumentError("Cannot sample from an empty weight table")

    keys = list(weights.keys())
    w = np.fromiter((float(weights[k]) for k in keys), dtype=np.float64, count=len(keys))
    if not np.all(np.isfinite(w)):
        raise InvalidArgumentError("Weights must be finite")
    if np.any(w < 0):
        raise InvalidArgumentError("Weights must be non-negative")
    total = w.sum()
    if total <= 0.0:
        raise InvalidArgumentError("Weights sum to zero; nothing can be sampled")

    if rng is None:
        rng = np.random.default_rng()
    probs = w / total

    if with_replacement:
        idx = rng.choice(len(keys), size=n, replace=True, p=probs)
    else:
        n = min(n, int(np.count_nonzero(w)))
        idx = rng.choice(len(keys), size=n, replace=False, p=probs)
    return [keys[int(i)] for i in idx]
