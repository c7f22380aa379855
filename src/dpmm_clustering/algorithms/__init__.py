"""
Algorithm Core Library - Dirichlet Process Mixture Model clustering.

This module provides the sampling and normalization primitives, the cluster
components, the Collapsed Gibbs Sampling trainer and the validation helpers.
"""

from .sampling import weighted_sampling
from .normalization import normalize_exp
from .clusters import AbstractCluster, GaussianCluster, MultinomialCluster
from .dpmm import (
    DPMM,
    GaussianDPMM,
    MultinomialDPMM,
    Initialization,
    TrainingParameters,
    GaussianTrainingParameters,
    MultinomialTrainingParameters,
    ModelParameters,
    Prediction,
)
from .validation import (
    ClusteringMetrics,
    purity,
    nmi,
    adjusted_rand_index,
    validate,
)
from .cross_validation import (
    CrossValidationConfig,
    CrossValidationResult,
    kfold_cross_validation,
)

__all__ = [
    # Primitives
    "weighted_sampling",
    "normalize_exp",
    # Clusters
    "AbstractCluster",
    "GaussianCluster",
    "MultinomialCluster",
    # DPMM
    "DPMM",
    "GaussianDPMM",
    "MultinomialDPMM",
    "Initialization",
    "TrainingParameters",
    "GaussianTrainingParameters",
    "MultinomialTrainingParameters",
    "ModelParameters",
    "Prediction",
    # Validation
    "ClusteringMetrics",
    "purity",
    "nmi",
    "adjusted_rand_index",
    "validate",
    "CrossValidationConfig",
    "CrossValidationResult",
    "kfold_cross_validation",
]
