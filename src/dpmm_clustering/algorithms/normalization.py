"""
Normalization of unnormalized log-probabilities (log-sum-exp trick).
"""

from __future__ import annotations

import math
from typing import Dict, Hashable, Mapping

from ..exceptions import NumericDegeneracyError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def normalize_exp(scores: Mapping[Hashable, float]) -> Dict[Hashable, float]:
    """
    Turn log-scores into a probability distribution over the same keys.

    Computes ``exp(s_i - max) / sum_k exp(s_k - max)``; subtracting the max
    keeps the exponentials in range no matter how large or small the scores
    are. ``-inf`` scores get probability 0, and identical scores give a uniform
    distribution, except when every score is ``-inf``: that table carries no
    finite mass and raises instead.

    If the exponentials sum to exactly 0 the scores are returned unchanged
    and a warning is logged.

    Args:
        scores: Mapping of key -> log-probability (any range)

    Returns:
        New dict of key -> probability in insertion order of *scores*

    Raises:
        NumericDegeneracyError: If a score is NaN, is ``+inf``, or no score is finite
    """
    if not scores:
        return {}

    bad = [k for k, s in scores.items() if math.isnan(s) or s == math.inf]
    if bad:
        raise NumericDegeneracyError(f"Cannot normalize NaN/+inf log scores for keys {bad}")

    max_score = max(scores.values())
    if max_score == -math.inf:
        raise NumericDegeneracyError(
            f"All {len(scores)} log scores are -inf; no finite mass to normalize"
        )

    exps = {k: math.exp(s - max_score) for k, s in scores.items()}
    total = sum(exps.values())
    if total == 0.0:
        logger.warning("Zero total mass while normalizing %d scores; left unnormalized", len(scores))
        return dict(scores)
    return {k: v / total for k, v in exps.items()}
