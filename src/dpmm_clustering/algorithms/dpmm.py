"""
Dirichlet Process Mixture Model clustering via Collapsed Gibbs Sampling.

The number of clusters is not fixed in advance: every record is repeatedly
removed from its cluster and re-sampled among the existing clusters plus a
brand-new one, so clusters are born and die online until a full pass makes
no reassignment (or the iteration budget runs out).

Provides:
- TrainingParameters / GaussianTrainingParameters / MultinomialTrainingParameters
- ModelParameters: learned cluster ensemble, feature index, iteration count
- DPMM: abstract trainer/predictor parameterized by a cluster factory
- GaussianDPMM, MultinomialDPMM: concrete models

Reference for the conditional probabilities:
https://www.cs.cmu.edu/~kbe/dp_tutorial.pdf
"""

from __future__ import annotations

import math
import numbers
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Tuple

import numpy as np

from ..dataobjects.dataframe import Dataframe, check_numeric
from ..dataobjects.record import Record
from ..exceptions import InconsistentStateError, InvalidArgumentError
from ..utils.logging_config import get_logger
from .clusters import AbstractCluster, GaussianCluster, MultinomialCluster
from .normalization import normalize_exp
from .sampling import weighted_sampling

logger = get_logger(__name__)

# (iteration, record id, live cluster ensemble) after every reassignment
AssignmentCallback = Callable[[int, int, Mapping[int, AbstractCluster]], None]


class Initialization(Enum):
    """How clusters are seeded before Gibbs sampling starts."""

    # Every record starts in its own singleton cluster.
    ONE_CLUSTER_PER_RECORD = "ONE_CLUSTER_PER_RECORD"
    # max(alpha, 1) * ln(n) clusters (at least 1); records assigned uniformly.
    RANDOM_ASSIGNMENT = "RANDOM_ASSIGNMENT"


@dataclass
class TrainingParameters:
    """Hyperparameters shared by every DPMM variant."""

    alpha: float = 1.0
    max_iterations: int = 1000
    initialization: Initialization = Initialization.ONE_CLUSTER_PER_RECORD
    seed: Optional[int] = None

    def validate(self) -> None:
        """
        Raises:
            InvalidArgumentError: If alpha <= 0 or max_iterations < 1
        """
        if not (isinstance(self.alpha, numbers.Real) and self.alpha > 0 and math.isfinite(self.alpha)):
            raise InvalidArgumentError(f"alpha must be a finite number > 0, got {self.alpha}")
        if not isinstance(self.max_iterations, numbers.Integral) or self.max_iterations < 1:
            raise InvalidArgumentError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not isinstance(self.initialization, Initialization):
            raise InvalidArgumentError(
                f"initialization must be an Initialization, got {self.initialization!r}"
            )

    @classmethod
    def from_config(cls, cfg=None, **overrides):
        """Build parameters from ``config.dpmm`` defaults, then apply *overrides*."""
        if cfg is None:
            from ..config import config as cfg

        kwargs: Dict[str, Any] = {
            "alpha": cfg.dpmm.alpha,
            "max_iterations": cfg.dpmm.max_iterations,
            "initialization": Initialization[cfg.dpmm.initialization],
            "seed": cfg.dpmm.seed,
        }
        kwargs.update(overrides)
        return cls(**kwargs)


@dataclass
class GaussianTrainingParameters(TrainingParameters):
    """Normal-Inverse-Wishart prior; see ``GaussianCluster``."""

    kappa0: float = 0
    nu0: float = 1
    mu0: Optional[List[float]] = None
    psi0: Optional[List[List[float]]] = None

    def validate(self) -> None:
        super().validate()
        if self.kappa0 < 0:
            raise InvalidArgumentError(f"kappa0 must be >= 0, got {self.kappa0}")
        if self.nu0 <= 0:
            raise InvalidArgumentError(f"nu0 must be > 0, got {self.nu0}")


@dataclass
class MultinomialTrainingParameters(TrainingParameters):
    """Dirichlet prior on per-cluster feature counts; see ``MultinomialCluster``."""

    alpha_words: float = 50.0

    def validate(self) -> None:
        super().validate()
        if not self.alpha_words > 0:
            raise InvalidArgumentError(f"alpha_words must be > 0, got {self.alpha_words}")


@dataclass
class ModelParameters:
    """State learned by ``fit``."""

    cluster_map: Dict[int, AbstractCluster] = field(default_factory=dict)
    feature_ids: Dict[Hashable, int] = field(default_factory=dict)
    d: int = 0
    total_iterations: int = 0
    gold_standard_classes: List[Any] = field(default_factory=list)

    @property
    def c(self) -> int:
        """Number of clusters."""
        return len(self.cluster_map)


@dataclass
class Prediction:
    """Most likely cluster and the normalized score of every cluster."""

    y: int
    y_predicted_probabilities: Dict[int, float]


class DPMM(ABC):
    """
    Dirichlet Process Mixture Model trainer and predictor.

    Subclasses choose the component family by implementing
    ``create_new_cluster``.

    Example:
        model = GaussianDPMM()
        model.fit(df, GaussianTrainingParameters(alpha=0.01, max_iterations=100))
        model.predict(df)  # writes y_predicted / y_predicted_probabilities
    """

    training_parameters_class = TrainingParameters

    def __init__(self, parallelized: Optional[bool] = None, max_workers: Optional[int] = None):
        """
        Args:
            parallelized: Score records on a thread pool in ``predict``
                (default: ``config.concurrency.parallelized``)
            max_workers: Pool size (default: ``config.concurrency.max_workers``)
        """
        from ..config import config

        self.parallelized = config.concurrency.parallelized if parallelized is None else parallelized
        self.max_workers = config.concurrency.max_workers if max_workers is None else max_workers
        self.model_parameters = ModelParameters()
        self.training_parameters: Optional[TrainingParameters] = None

    # ------------------------------------------------------------------
    # accessors
    # ------------------------------------------------------------------

    @property
    def clusters(self) -> Dict[int, AbstractCluster]:
        return self.model_parameters.cluster_map

    @property
    def feature_ids(self) -> Dict[Hashable, int]:
        return self.model_parameters.feature_ids

    @property
    def total_iterations(self) -> int:
        return self.model_parameters.total_iterations

    @abstractmethod
    def create_new_cluster(self, cluster_id: int) -> AbstractCluster:
        """Return an empty cluster with the current hyperparameters."""

    def _validate_dimensions(self, training_parameters: TrainingParameters, d: int) -> None:
        """Hook for variants whose hyperparameters depend on the feature count."""

    # ------------------------------------------------------------------
    # training
    # ------------------------------------------------------------------

    def fit(
        self,
        dataframe: Dataframe,
        training_parameters: TrainingParameters,
        *,
        warm_start: bool = False,
        on_assignment: Optional[AssignmentCallback] = None,
    ) -> None:
        """
        Learn the cluster ensemble from *dataframe*.

        Each training record's ``y_predicted`` is set to its final cluster id.

        Args:
            dataframe: Training records
            training_parameters: Hyperparameters (an instance of
                ``training_parameters_class``)
            warm_start: Keep previously learned clusters; the new clusters are
                appended with ids following the existing ones. The feature
                index of a trained model cannot grow.
            on_assignment: Called after every single reassignment with
                ``(iteration, record_id, live_clusters)``; for diagnostics

        Raises:
            InvalidArgumentError: On invalid parameters, an empty dataframe or
                a non-numeric feature value; nothing is modified in that case.
                A model that was already trained keeps its previous state
                whenever ``fit`` raises.
        """
        if not isinstance(training_parameters, self.training_parameters_class):
            raise InvalidArgumentError(
                f"{type(self).__name__} expects {self.training_parameters_class.__name__}, "
                f"got {type(training_parameters).__name__}"
            )
        training_parameters.validate()
        if len(dataframe) == 0:
            raise InvalidArgumentError("Cannot fit on an empty dataframe")

        previous = self.model_parameters if warm_start else ModelParameters()
        feature_ids, gold_standard_classes = self._build_feature_ids(
            dataframe, previous.feature_ids, previous.gold_standard_classes
        )
        if warm_start and previous.cluster_map and len(feature_ids) != len(previous.feature_ids):
            unseen = [f for f in feature_ids if f not in previous.feature_ids]
            raise InvalidArgumentError(
                f"warm_start cannot add features to a trained model; unseen features: {unseen}"
            )
        self._validate_dimensions(training_parameters, len(feature_ids))

        model_parameters = ModelParameters(
            cluster_map=dict(previous.cluster_map),
            feature_ids=feature_ids,
            d=len(feature_ids),
            total_iterations=0,
            gold_standard_classes=gold_standard_classes,
        )
        saved = (self.model_parameters, self.training_parameters)
        self.model_parameters = model_parameters
        self.training_parameters = training_parameters

        rng = np.random.default_rng(training_parameters.seed)
        try:
            total_iterations = self._collapsed_gibbs_sampling(dataframe, rng, on_assignment)
        except Exception:
            self.model_parameters, self.training_parameters = saved
            raise
        model_parameters.total_iterations = total_iterations

        logger.info(
            "DPMM fit: %d records, %d features, %d clusters after %d iterations",
            len(dataframe),
            model_parameters.d,
            model_parameters.c,
            total_iterations,
        )

    @staticmethod
    def _build_feature_ids(
        dataframe: Dataframe,
        feature_ids: Mapping[Hashable, int],
        gold_standard_classes: List[Any],
    ) -> Tuple[Dict[Hashable, int], List[Any]]:
        """Extend the feature index (first-seen order) and the gold label list."""
        feature_ids = dict(feature_ids)
        classes = list(gold_standard_classes)
        seen_classes = set(classes)
        next_id = len(feature_ids)
        for r in dataframe:
            check_numeric(r)
            if r.y is not None and r.y not in seen_classes:
                seen_classes.add(r.y)
                classes.append(r.y)
            for feature in r.x:
                if feature not in feature_ids:
                    feature_ids[feature] = next_id
                    next_id += 1
        return feature_ids, classes

    def _initialize_clusters(
        self,
        entries: List[Tuple[int, Record]],
        rng: np.random.Generator,
    ) -> Tuple[Dict[int, AbstractCluster], Dict[int, int], int]:
        """Seed the temporary ensemble; returns (clusters, assignments, next id)."""
        feature_ids = self.model_parameters.feature_ids
        tp = self.training_parameters
        clusters: Dict[int, AbstractCluster] = {}
        assignments: Dict[int, int] = {}
        new_cluster_id = 0

        if tp.initialization is Initialization.ONE_CLUSTER_PER_RECORD:
            for rid, r in entries:
                cluster = self.create_new_cluster(new_cluster_id)
                cluster.add(r, feature_ids)
                clusters[new_cluster_id] = cluster
                assignments[rid] = new_cluster_id
                new_cluster_id += 1
        else:
            number_of_clusters = int(max(tp.alpha, 1) * math.log(len(entries)))
            if number_of_clusters <= 0:
                number_of_clusters = 1

            for _ in range(number_of_clusters):
                clusters[new_cluster_id] = self.create_new_cluster(new_cluster_id)
                new_cluster_id += 1

            for rid, r in entries:
                cid = int(rng.integers(0, number_of_clusters))
                clusters[cid].add(r, feature_ids)
                assignments[rid] = cid

            # Clusters that drew no record would be scored with zero mass forever.
            for cid in [cid for cid, c in clusters.items() if c.size == 0]:
                del clusters[cid]
            logger.debug(
                "Random initialization: %d of %d clusters populated",
                len(clusters),
                number_of_clusters,
            )

        return clusters, assignments, new_cluster_id

    def _collapsed_gibbs_sampling(
        self,
        dataframe: Dataframe,
        rng: np.random.Generator,
        on_assignment: Optional[AssignmentCallback] = None,
    ) -> int:
        """Run the sampler and store the final ensemble; returns iterations performed."""
        feature_ids = self.model_parameters.feature_ids
        alpha = self.training_parameters.alpha
        max_iterations = self.training_parameters.max_iterations

        entries = list(dataframe.entries())
        clusters, assignments, new_cluster_id = self._initialize_clusters(entries, rng)

        iteration = 0
        no_change_made = False
        while iteration < max_iterations and not no_change_made:
            logger.debug("Iteration %d, %d clusters", iteration, len(clusters))

            no_change_made = True
            # Cluster count is fixed for the whole pass.
            n = len(clusters)
            for rid, r in entries:
                point_cluster_id = assignments[rid]
                ci = clusters.get(point_cluster_id)
                if ci is None:
                    raise InconsistentStateError(
                        f"Record {rid} is assigned to unknown cluster {point_cluster_id}"
                    )

                ci.remove(r, feature_ids)
                if ci.size == 0:
                    del clusters[point_cluster_id]

                log_scores = self._cluster_log_scores(r, n, clusters)

                # P(z_i = new | z_-i, Data) = alpha / (alpha + n - 1), times the prior predictive
                c_new = self.create_new_cluster(new_cluster_id)
                prior_log_predictive = c_new.posterior_log_pdf(r, feature_ids)
                log_scores[new_cluster_id] = prior_log_predictive + math.log(alpha / (alpha + n - 1.0))

                probabilities = normalize_exp(log_scores)
                sampled_cluster_id = weighted_sampling(probabilities, 1, True, rng)[0]

                if sampled_cluster_id == new_cluster_id:
                    c_new.add(r, feature_ids)
                    clusters[new_cluster_id] = c_new
                    new_cluster_id += 1
                else:
                    clusters[sampled_cluster_id].add(r, feature_ids)

                if sampled_cluster_id != point_cluster_id:
                    assignments[rid] = sampled_cluster_id
                    no_change_made = False

                if on_assignment is not None:
                    on_assignment(iteration, rid, clusters)

            iteration += 1

        if no_change_made:
            logger.debug("Converged after %d iterations", iteration)
        else:
            logger.info("Gibbs sampling stopped at max_iterations=%d without converging", max_iterations)

        self._store_clusters(dataframe, entries, clusters, assignments)
        return iteration

    def _cluster_log_scores(
        self,
        r: Record,
        n: int,
        clusters: Mapping[int, AbstractCluster],
    ) -> Dict[int, float]:
        """log P_k(x_i) + log(N_k,-i / (alpha + n - 1)) for every live cluster."""
        feature_ids = self.model_parameters.feature_ids
        alpha = self.training_parameters.alpha
        scores: Dict[int, float] = {}
        for cluster_id, ck in clusters.items():
            marginal_log_likelihood = ck.posterior_log_pdf(r, feature_ids)
            mixing = ck.size / (alpha + n - 1.0)
            scores[cluster_id] = marginal_log_likelihood + math.log(mixing)
        return scores

    def _store_clusters(
        self,
        dataframe: Dataframe,
        entries: List[Tuple[int, Record]],
        clusters: Mapping[int, AbstractCluster],
        assignments: Mapping[int, int],
    ) -> None:
        """Copy the temporary ensemble into the model with dense ids and label the clusters."""
        cluster_map = self.model_parameters.cluster_map
        offset = len(cluster_map)
        id_map: Dict[int, int] = {}
        for i, (temp_id, cluster) in enumerate(clusters.items()):
            final_id = offset + i
            id_map[temp_id] = final_id
            cluster_map[final_id] = cluster.copy_to_new(final_id)

        label_counts: Dict[int, Counter] = {cid: Counter() for cid in id_map.values()}
        for rid, r in entries:
            final_id = id_map[assignments[rid]]
            if r.y is not None:
                label_counts[final_id][r.y] += 1
            dataframe.set(rid, r.with_prediction(final_id))

        for final_id, counts in label_counts.items():
            cluster = cluster_map[final_id]
            if counts:
                cluster.label_y = counts.most_common(1)[0][0]
            cluster.clear()

    # ------------------------------------------------------------------
    # prediction
    # ------------------------------------------------------------------

    def _check_trained(self) -> None:
        if not self.model_parameters.feature_ids or not self.model_parameters.cluster_map:
            raise InvalidArgumentError("The model has not been trained; call fit() first")

    def predict_record(self, record: Record) -> Prediction:
        """
        Score *record* against every cluster and pick the most likely one.

        Raises:
            InvalidArgumentError: If the model has not been trained
        """
        self._check_trained()
        return self._predict_record(
            record,
            list(self.model_parameters.cluster_map.items()),
            self.model_parameters.feature_ids,
        )

    @staticmethod
    def _predict_record(
        record: Record,
        clusters: List[Tuple[int, AbstractCluster]],
        feature_ids: Mapping[Hashable, int],
    ) -> Prediction:
        cluster_scores = {cid: c.posterior_log_pdf(record, feature_ids) for cid, c in clusters}
        cluster_scores = normalize_exp(cluster_scores)
        # max() keeps the first maximum in insertion order
        selected = max(cluster_scores, key=cluster_scores.get)
        return Prediction(y=selected, y_predicted_probabilities=cluster_scores)

    def predict(self, dataframe: Dataframe) -> None:
        """
        Assign every record of *dataframe* to its most likely cluster.

        Writes ``y_predicted`` and ``y_predicted_probabilities`` back onto each
        record (by id, so order is preserved). Clusters are only read, so
        records are scored concurrently when ``parallelized`` is set.

        Raises:
            InvalidArgumentError: If the model has not been trained
        """
        self._check_trained()
        feature_ids = self.model_parameters.feature_ids
        clusters = list(self.model_parameters.cluster_map.items())
        entries = list(dataframe.entries())

        def score(entry: Tuple[int, Record]) -> Prediction:
            return self._predict_record(entry[1], clusters, feature_ids)

        if self.parallelized and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                predictions = list(executor.map(score, entries))
        else:
            predictions = [score(e) for e in entries]

        for (rid, r), p in zip(entries, predictions):
            dataframe.set(rid, r.with_prediction(p.y, p.y_predicted_probabilities))

        logger.info("DPMM predict: %d records over %d clusters", len(entries), len(clusters))


# ------------------------------------------------------------------
# concrete models
# ------------------------------------------------------------------


class GaussianDPMM(DPMM):
    """DPMM with multivariate Gaussian components (continuous features)."""

    training_parameters_class = GaussianTrainingParameters

    def _validate_dimensions(self, training_parameters: GaussianTrainingParameters, d: int) -> None:
        if training_parameters.mu0 is not None and np.shape(training_parameters.mu0) != (d,):
            raise InvalidArgumentError(
                f"mu0 must have {d} entries (one per feature), got shape {np.shape(training_parameters.mu0)}"
            )
        if training_parameters.psi0 is not None and np.shape(training_parameters.psi0) != (d, d):
            raise InvalidArgumentError(
                f"psi0 must be {d}x{d}, got shape {np.shape(training_parameters.psi0)}"
            )

    def create_new_cluster(self, cluster_id: int) -> GaussianCluster:
        tp = self.training_parameters
        return GaussianCluster(
            cluster_id,
            self.model_parameters.d,
            kappa0=tp.kappa0,
            nu0=tp.nu0,
            mu0=np.asarray(tp.mu0, dtype=np.float64) if tp.mu0 is not None else None,
            psi0=np.asarray(tp.psi0, dtype=np.float64) if tp.psi0 is not None else None,
        )


class MultinomialDPMM(DPMM):
    """DPMM with Dirichlet-multinomial components (count features such as word counts)."""

    training_parameters_class = MultinomialTrainingParameters

    def create_new_cluster(self, cluster_id: int) -> MultinomialCluster:
        return MultinomialCluster(
            cluster_id,
            self.model_parameters.d,
            alpha_words=self.training_parameters.alpha_words,
        )
