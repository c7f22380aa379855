"""
K-fold cross validation for DPMM models.

Splits a labeled Dataframe into k folds, trains a fresh model on k-1 folds,
validates on the held-out fold and averages the metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from ..dataobjects.dataframe import Dataframe
from ..utils.logging_config import get_logger
from .dpmm import DPMM, TrainingParameters
from .validation import ClusteringMetrics, validate

logger = get_logger(__name__)


@dataclass
class CrossValidationConfig:
    """Configuration for k-fold cross validation."""

    k: int = 5
    shuffle: bool = True
    seed: int = 0


@dataclass
class CrossValidationResult:
    """Per-fold metrics and their averages."""

    folds: List[ClusteringMetrics] = field(default_factory=list)
    purity_mean: Optional[float] = None
    nmi_mean: Optional[float] = None
    ari_mean: Optional[float] = None
    n_clusters_mean: float = 0.0


def _mean_or_none(values: List[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return float(np.mean(present))


def kfold_cross_validation(
    model_factory: Callable[[], DPMM],
    dataframe: Dataframe,
    training_parameters: TrainingParameters,
    cfg: Optional[CrossValidationConfig] = None,
) -> CrossValidationResult:
    """
    Run k-fold cross validation.

    Pipeline for each fold i in [0..k):
    1. Train a new model (``model_factory()``) on every fold except i
    2. Predict fold i and compute purity / NMI / ARI against its gold labels

    The input Dataframe is not modified; folds are copies.

    Args:
        model_factory: Zero-argument callable returning an untrained DPMM
        dataframe: Records (with gold labels for meaningful metrics)
        training_parameters: Hyperparameters used for every fold
        cfg: CrossValidationConfig (defaults if None)

    Returns:
        CrossValidationResult with per-fold metrics and averages

    Raises:
        ValueError: If k < 2 or k > number of records
    """
    if cfg is None:
        cfg = CrossValidationConfig()

    n = len(dataframe)
    if cfg.k < 2:
        raise ValueError(f"k must be >= 2, got {cfg.k}")
    if cfg.k > n:
        raise ValueError(f"k ({cfg.k}) cannot exceed number of records ({n})")

    ids = np.array(dataframe.ids())
    if cfg.shuffle:
        rng = np.random.default_rng(cfg.seed)
        ids = rng.permutation(ids)
    folds_ids = np.array_split(ids, cfg.k)

    folds: List[ClusteringMetrics] = []
    for i in range(cfg.k):
        train_ids = np.concatenate([f for j, f in enumerate(folds_ids) if j != i])
        training_data = dataframe.subset(int(rid) for rid in train_ids)
        validation_data = dataframe.subset(int(rid) for rid in folds_ids[i])

        model = model_factory()
        model.fit(training_data, training_parameters)
        metrics = validate(model, validation_data)
        logger.debug("Fold %d/%d: %s", i + 1, cfg.k, metrics)
        folds.append(metrics)

    return CrossValidationResult(
        folds=folds,
        purity_mean=_mean_or_none([m.purity for m in folds]),
        nmi_mean=_mean_or_none([m.nmi for m in folds]),
        ari_mean=_mean_or_none([m.ari for m in folds]),
        n_clusters_mean=float(np.mean([m.n_clusters for m in folds])),
    )
