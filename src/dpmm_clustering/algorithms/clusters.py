"""
Mixture components used by the DPMM.

A cluster owns the sufficient statistics of the records currently assigned
to it and evaluates the posterior predictive log-density of a record. The
feature index that maps feature names to vector positions is never stored on
the cluster: callers pass it to every ``add``/``remove``/``posterior_log_pdf``
call.

Provides:
- AbstractCluster: the contract the Gibbs sampler relies on
- GaussianCluster: Normal-Inverse-Wishart conjugate prior
- MultinomialCluster: Dirichlet-multinomial (bag-of-words counts)
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Hashable, Mapping, Optional

import numpy as np
from scipy.special import gammaln

from ..dataobjects.dataframe import parse_record
from ..dataobjects.record import Record
from ..exceptions import InconsistentStateError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

FeatureIds = Mapping[Hashable, int]


class AbstractCluster(ABC):
    """
    One component of the mixture.

    Lifecycle: a cluster is created empty, populated through ``add`` and
    emptied through ``remove``. A cluster never deletes itself; whoever holds
    the ensemble must drop it as soon as ``size`` reaches 0.
    """

    def __init__(self, cluster_id: int, dimensions: int):
        self.cluster_id = cluster_id
        self.dimensions = dimensions
        self.label_y: Optional[Any] = None
        self._size = 0

    @property
    def size(self) -> int:
        """Number of records currently assigned."""
        return self._size

    def __repr__(self) -> str:
        return f"{type(self).__name__}(cluster_id={self.cluster_id}, size={self._size})"

    def _vector(self, record: Record, feature_ids: Optional[FeatureIds]) -> np.ndarray:
        if feature_ids is None:
            raise InconsistentStateError(
                f"Cluster {self.cluster_id} evaluated without a feature index"
            )
        if len(feature_ids) != self.dimensions:
            raise InconsistentStateError(
                f"Cluster {self.cluster_id} has {self.dimensions} dimensions but the "
                f"feature index has {len(feature_ids)} features"
            )
        return parse_record(record, feature_ids)

    def _check_removable(self) -> None:
        if self._size <= 0:
            raise InconsistentStateError(f"Cannot remove a record from empty cluster {self.cluster_id}")

    @abstractmethod
    def add(self, record: Record, feature_ids: FeatureIds) -> None:
        """Incorporate *record* into the sufficient statistics."""

    @abstractmethod
    def remove(self, record: Record, feature_ids: FeatureIds) -> None:
        """Reverse a previous ``add`` of *record*."""

    @abstractmethod
    def update_cluster_parameters(self) -> None:
        """Recompute derived parameters from the sufficient statistics."""

    @abstractmethod
    def posterior_log_pdf(self, record: Record, feature_ids: FeatureIds) -> float:
        """
        Log posterior predictive density of *record* under this cluster.

        For an empty cluster this is the prior predictive. Must not mutate
        the cluster's statistics.
        """

    @abstractmethod
    def copy_to_new(self, cluster_id: int) -> "AbstractCluster":
        """Independent copy of this cluster carrying a new id."""

    @abstractmethod
    def clear(self) -> None:
        """Drop training-only state once the cluster is final."""


# ------------------------------------------------------------------
# Gaussian
# ------------------------------------------------------------------


class GaussianCluster(AbstractCluster):
    """
    Multivariate Gaussian component with a Normal-Inverse-Wishart prior.

    Hyperparameters (Murphy, "Conjugate Bayesian analysis of the Gaussian
    distribution", section 9):
        kappa0: prior pseudo-count on the mean
        nu0: prior degrees of freedom (raised to ``dimensions`` if smaller)
        mu0: prior mean (zero vector if None)
        psi0: prior scale matrix (identity if None)

    The posterior predictive (a Student-t) is approximated by a Gaussian with
    mean ``mu_n`` and covariance ``psi_n (kappa_n+1) / (kappa_n (nu_n-d+1))``.
    """

    def __init__(
        self,
        cluster_id: int,
        dimensions: int,
        kappa0: float = 0,
        nu0: float = 1,
        mu0: Optional[np.ndarray] = None,
        psi0: Optional[np.ndarray] = None,
    ):
        super().__init__(cluster_id, dimensions)
        if nu0 < dimensions:
            nu0 = dimensions
        if mu0 is None:
            mu0 = np.zeros(dimensions)
        if psi0 is None:
            psi0 = np.eye(dimensions)
        mu0 = np.asarray(mu0, dtype=np.float64)
        psi0 = np.asarray(psi0, dtype=np.float64)
        if mu0.shape != (dimensions,):
            raise ValueError(f"mu0 must have shape ({dimensions},), got {mu0.shape}")
        if psi0.shape != (dimensions, dimensions):
            raise ValueError(
                f"psi0 must have shape ({dimensions}, {dimensions}), got {psi0.shape}"
            )

        self.kappa0 = kappa0
        self.nu0 = nu0
        self.mu0 = mu0
        self.psi0 = psi0

        # Sample mean and centred scatter sum((x - xbar)(x - xbar)^T), kept
        # up to date incrementally (Welford).
        self._xbar: Optional[np.ndarray] = np.zeros(dimensions)
        self._scatter: Optional[np.ndarray] = np.zeros((dimensions, dimensions))

        self._lock = threading.Lock()
        self._reset_to_prior()

    def _reset_to_prior(self) -> None:
        self.mean = self.mu0.copy()
        self.covariance = self.psi0.copy()
        self.mean_error = self._mean_error(self.psi0, self.kappa0, self.nu0)
        self.mean_df = self.nu0 - self.dimensions + 1
        self._cache_logdet: Optional[float] = None
        self._cache_inverse: Optional[np.ndarray] = None

    def _mean_error(self, psi: np.ndarray, kappa: float, nu: float) -> np.ndarray:
        # Covariance of the posterior over the mean; undefined for kappa == 0.
        denom = kappa * (nu - self.dimensions + 1.0)
        if denom == 0:
            return np.full_like(psi, np.inf)
        return psi / denom

    def _check_updatable(self) -> None:
        if self._xbar is None:
            raise InconsistentStateError(f"Cluster {self.cluster_id} was cleared and cannot be updated")

    def add(self, record: Record, feature_ids: FeatureIds) -> None:
        self._check_updatable()
        x = self._vector(record, feature_ids)
        n = self._size + 1
        delta = x - self._xbar
        self._xbar = self._xbar + delta / n
        # (x - xbar_old)(x - xbar_new)^T, written symmetrically
        self._scatter = self._scatter + np.outer(delta, delta) * ((n - 1.0) / n)
        self._size = n
        self.update_cluster_parameters()

    def remove(self, record: Record, feature_ids: FeatureIds) -> None:
        self._check_updatable()
        self._check_removable()
        x = self._vector(record, feature_ids)
        n = self._size - 1
        if n == 0:
            self._xbar = np.zeros(self.dimensions)
            self._scatter = np.zeros((self.dimensions, self.dimensions))
        else:
            delta = x - self._xbar
            self._xbar = self._xbar - delta / n
            self._scatter = self._scatter - np.outer(delta, delta) * ((n + 1.0) / n)
        self._size = n
        self.update_cluster_parameters()

    def update_cluster_parameters(self) -> None:
        n = self._size
        if n == 0:
            with self._lock:
                self._reset_to_prior()
            return

        kappa_n = self.kappa0 + n
        nu_n = self.nu0 + n

        mu = self._xbar
        mu_mu0 = mu - self.mu0
        C = self._scatter
        psi = self.psi0 + C + (self.kappa0 * n / kappa_n) * np.outer(mu_mu0, mu_mu0)

        with self._lock:
            self.mean = (self.kappa0 * self.mu0 + n * mu) / kappa_n
            self.covariance = psi * (kappa_n + 1.0) / (kappa_n * (nu_n - self.dimensions + 1.0))
            self._cache_logdet = None
            self._cache_inverse = None
        self.mean_error = self._mean_error(psi, kappa_n, nu_n)
        self.mean_df = nu_n - self.dimensions + 1

    def _covariance_factors(self):
        # Double-checked so concurrent predictions compute the factors once.
        logdet, inverse = self._cache_logdet, self._cache_inverse
        if logdet is None or inverse is None:
            with self._lock:
                if self._cache_logdet is None or self._cache_inverse is None:
                    sign, ld = np.linalg.slogdet(self.covariance)
                    if sign <= 0:
                        logger.warning(
                            "Cluster %s covariance is not positive definite", self.cluster_id
                        )
                        self._cache_logdet = np.nan
                        self._cache_inverse = np.full_like(self.covariance, np.nan)
                    else:
                        self._cache_logdet = float(ld)
                        self._cache_inverse = np.linalg.inv(self.covariance)
                logdet, inverse = self._cache_logdet, self._cache_inverse
        return logdet, inverse

    def posterior_log_pdf(self, record: Record, feature_ids: FeatureIds) -> float:
        x_mu = self._vector(record, feature_ids) - self.mean
        logdet, inverse = self._covariance_factors()
        if np.isnan(logdet):
            return -np.inf
        quad = float(x_mu @ inverse @ x_mu)
        return -0.5 * (quad + self.dimensions * np.log(2 * np.pi) + logdet)

    def copy_to_new(self, cluster_id: int) -> "GaussianCluster":
        c = GaussianCluster(cluster_id, self.dimensions, self.kappa0, self.nu0, self.mu0, self.psi0)
        c._size = self._size
        c.label_y = self.label_y
        c._xbar = None if self._xbar is None else self._xbar.copy()
        c._scatter = None if self._scatter is None else self._scatter.copy()
        c.mean = self.mean.copy()
        c.covariance = self.covariance.copy()
        c.mean_error = self.mean_error.copy()
        c.mean_df = self.mean_df
        return c

    def clear(self) -> None:
        self._xbar = None
        self._scatter = None
        with self._lock:
            self._cache_logdet = None
            self._cache_inverse = None


# ------------------------------------------------------------------
# Multinomial
# ------------------------------------------------------------------


def _log_beta(a: np.ndarray) -> float:
    """ln of the multivariate Beta function: sum(lnΓ(a_i)) - lnΓ(sum(a_i))."""
    return float(np.sum(gammaln(a)) - gammaln(np.sum(a)))


class MultinomialCluster(AbstractCluster):
    """
    Dirichlet-multinomial component over count features (e.g. word counts).

    ``alpha_words`` is the symmetric Dirichlet prior on the per-cluster
    feature distribution; larger values spread mass over more features.
    """

    def __init__(self, cluster_id: int, dimensions: int, alpha_words: float = 50.0):
        super().__init__(cluster_id, dimensions)
        if not alpha_words > 0:
            raise ValueError(f"alpha_words must be > 0, got {alpha_words}")
        self.alpha_words = alpha_words
        self.word_counts = np.zeros(dimensions)
        self._log_beta_counts = _log_beta(self.word_counts + alpha_words)

    def add(self, record: Record, feature_ids: FeatureIds) -> None:
        x = self._vector(record, feature_ids)
        self.word_counts = self.word_counts + x
        self._size += 1
        self.update_cluster_parameters()

    def remove(self, record: Record, feature_ids: FeatureIds) -> None:
        self._check_removable()
        x = self._vector(record, feature_ids)
        self.word_counts = self.word_counts - x
        self._size -= 1
        self.update_cluster_parameters()

    def update_cluster_parameters(self) -> None:
        if self._size == 0:
            self.word_counts = np.zeros(self.dimensions)
        self._log_beta_counts = _log_beta(self.word_counts + self.alpha_words)

    def posterior_log_pdf(self, record: Record, feature_ids: FeatureIds) -> float:
        x = self._vector(record, feature_ids)
        return _log_beta(self.word_counts + self.alpha_words + x) - self._log_beta_counts

    def copy_to_new(self, cluster_id: int) -> "MultinomialCluster":
        c = MultinomialCluster(cluster_id, self.dimensions, self.alpha_words)
        c._size = self._size
        c.label_y = self.label_y
        c.word_counts = self.word_counts.copy()
        c._log_beta_counts = self._log_beta_counts
        return c

    def clear(self) -> None:
        # Counts are the model parameters; nothing else to drop.
        pass
