"""
Clustering validation metrics.

Compares predicted cluster ids with gold-standard labels: purity,
normalized mutual information (NMI) and adjusted Rand index (ARI).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence, Tuple

import numpy as np

from ..dataobjects.dataframe import Dataframe

if TYPE_CHECKING:
    from .dpmm import DPMM


@dataclass
class ClusteringMetrics:
    """Validation metrics for one clustering.

    ``purity`` and ``nmi`` are None when the data carries no gold labels.
    """

    purity: Optional[float]
    nmi: Optional[float]
    ari: Optional[float]
    n_clusters: int
    n_samples: int


def _encode(labels: Sequence[Any]) -> np.ndarray:
    # Labels only need to be hashable, so no sorting as np.unique would do.
    index: dict = {}
    return np.array([index.setdefault(label, len(index)) for label in labels], dtype=np.int64)


def _contingency(labels_a: Sequence[Any], labels_b: Sequence[Any]) -> np.ndarray:
    """(n_classes_a, n_classes_b) table of co-occurrence counts."""
    a = _encode(labels_a)
    b = _encode(labels_b)
    contingency = np.zeros((a.max() + 1, b.max() + 1), dtype=np.int64)
    np.add.at(contingency, (a, b), 1)
    return contingency


def _check_aligned(labels_true: Sequence[Any], labels_pred: Sequence[Any]) -> int:
    n = len(labels_true)
    if n != len(labels_pred):
        raise ValueError(
            f"labels_true has {n} entries but labels_pred has {len(labels_pred)}"
        )
    if n == 0:
        raise ValueError("Cannot score an empty clustering")
    return n


def purity(labels_true: Sequence[Any], labels_pred: Sequence[Any]) -> float:
    """
    Fraction of samples belonging to the majority gold class of their cluster.

    Returns:
        Purity in (0, 1]; 1.0 when every cluster is single-class
    """
    n = _check_aligned(labels_true, labels_pred)
    contingency = _contingency(labels_true, labels_pred)
    return float(contingency.max(axis=0).sum() / n)


def nmi(labels_true: Sequence[Any], labels_pred: Sequence[Any]) -> float:
    """
    Normalized mutual information I(W;C) / ((H(W) + H(C)) / 2).

    Returns 1.0 when both partitions are trivial (single class and single
    cluster), since they are then identical.
    """
    n = _check_aligned(labels_true, labels_pred)
    contingency = _contingency(labels_true, labels_pred).astype(np.float64)

    count_c = contingency.sum(axis=1)  # per gold class
    count_w = contingency.sum(axis=0)  # per cluster

    nz = contingency > 0
    outer = np.outer(count_c, count_w)
    mutual_info = float(np.sum(contingency[nz] / n * np.log(n * contingency[nz] / outer[nz])))

    entropy_c = float(-np.sum(count_c / n * np.log(count_c / n)))
    entropy_w = float(-np.sum(count_w / n * np.log(count_w / n)))

    denom = (entropy_c + entropy_w) / 2.0
    if denom == 0:
        return 1.0
    return mutual_info / denom


def adjusted_rand_index(labels_a: Sequence[Any], labels_b: Sequence[Any]) -> float:
    """
    Compute Adjusted Rand Index between two clusterings.

    ARI measures agreement between two clusterings, adjusted for chance.
    Returns 1.0 for identical clusterings, ~0.0 for random agreement.

    Args:
        labels_a: First clustering labels
        labels_b: Second clustering labels

    Returns:
        ARI score in [-1, 1], typically in [0, 1]
    """
    n = _check_aligned(labels_a, labels_b)
    contingency = _contingency(labels_a, labels_b)

    sum_comb = (contingency * (contingency - 1) / 2.0).sum()
    sum_comb_c = (contingency.sum(axis=1) * (contingency.sum(axis=1) - 1) / 2.0).sum()
    sum_comb_k = (contingency.sum(axis=0) * (contingency.sum(axis=0) - 1) / 2.0).sum()
    comb_n = n * (n - 1) / 2.0

    if comb_n == 0:
        return 1.0

    expected_index = (sum_comb_c * sum_comb_k) / comb_n
    max_index = 0.5 * (sum_comb_c + sum_comb_k)
    denom = max_index - expected_index
    if denom == 0:
        return 1.0
    return float((sum_comb - expected_index) / denom)


def _labeled_pairs(dataframe: Dataframe) -> Tuple[list, list]:
    y_true, y_pred = [], []
    for r in dataframe:
        if r.y is not None:
            y_true.append(r.y)
            y_pred.append(r.y_predicted)
    return y_true, y_pred


def validate(model: "DPMM", dataframe: Dataframe) -> ClusteringMetrics:
    """
    Predict *dataframe* with a trained model and score the assignment.

    Records without a gold label are predicted but excluded from the metrics.

    Args:
        model: Trained DPMM
        dataframe: Records to predict (updated in place)

    Returns:
        ClusteringMetrics
    """
    model.predict(dataframe)
    y_true, y_pred = _labeled_pairs(dataframe)

    if not y_true:
        return ClusteringMetrics(
            purity=None,
            nmi=None,
            ari=None,
            n_clusters=len(model.clusters),
            n_samples=len(dataframe),
        )

    return ClusteringMetrics(
        purity=purity(y_true, y_pred),
        nmi=nmi(y_true, y_pred),
        ari=adjusted_rand_index(y_true, y_pred),
        n_clusters=len(model.clusters),
        n_samples=len(dataframe),
    )
