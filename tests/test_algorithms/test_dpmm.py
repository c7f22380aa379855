"""
Tests for DPMM training (Collapsed Gibbs Sampling) and prediction.
"""

import logging
import math

import numpy as np
import pytest

from dpmm_clustering.algorithms.clusters import GaussianCluster
from dpmm_clustering.algorithms.dpmm import (
    GaussianDPMM,
    GaussianTrainingParameters,
    Initialization,
    ModelParameters,
    MultinomialDPMM,
    MultinomialTrainingParameters,
    TrainingParameters,
)
from dpmm_clustering.config import Config
from dpmm_clustering.dataobjects import Dataframe, Record
from dpmm_clustering.exceptions import InvalidArgumentError


def _groups(df):
    """Map cluster id -> sorted list of first feature values."""
    groups = {}
    for r in df:
        groups.setdefault(r.y_predicted, []).append(r.x[0])
    return {cid: sorted(v) for cid, v in groups.items()}


# ------------------------------------------------------------------
# parameter validation
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "params, message",
    [
        (GaussianTrainingParameters(alpha=0.0), "alpha must be"),
        (GaussianTrainingParameters(alpha=-1.0), "alpha must be"),
        (GaussianTrainingParameters(max_iterations=0), "max_iterations must be"),
        (GaussianTrainingParameters(kappa0=-1), "kappa0 must be"),
        (GaussianTrainingParameters(initialization="RANDOM"), "initialization must be"),
    ],
)
def test_fit_rejects_invalid_parameters(scenario_dataframe, params, message):
    """Invalid parameters fail before the dataframe or model is touched."""
    model = GaussianDPMM(parallelized=False)
    with pytest.raises(InvalidArgumentError, match=message):
        model.fit(scenario_dataframe, params)
    assert model.model_parameters == ModelParameters()
    assert all(r.y_predicted is None for r in scenario_dataframe)


def test_fit_rejects_empty_dataframe():
    model = GaussianDPMM(parallelized=False)
    with pytest.raises(InvalidArgumentError, match="empty dataframe"):
        model.fit(Dataframe(), GaussianTrainingParameters())


def test_fit_rejects_wrong_parameter_class(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    with pytest.raises(InvalidArgumentError, match="expects GaussianTrainingParameters"):
        model.fit(scenario_dataframe, MultinomialTrainingParameters())


def test_fit_rejects_prior_with_wrong_dimensions(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    with pytest.raises(InvalidArgumentError, match="mu0 must have 1 entries"):
        model.fit(scenario_dataframe, GaussianTrainingParameters(mu0=[0.0, 0.0]))
    with pytest.raises(InvalidArgumentError, match="psi0 must be 1x1"):
        model.fit(scenario_dataframe, GaussianTrainingParameters(psi0=[[1.0, 0.0], [0.0, 1.0]]))


def test_predict_before_fit(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    with pytest.raises(InvalidArgumentError, match="not been trained"):
        model.predict(scenario_dataframe)
    with pytest.raises(InvalidArgumentError, match="not been trained"):
        model.predict_record(Record(x={0: 1.0}))


# ------------------------------------------------------------------
# feature index
# ------------------------------------------------------------------


def test_feature_ids_first_seen_order():
    df = Dataframe(
        [
            Record(x={"b": 1.0, "a": 2.0}),
            Record(x={"c": 1.0, "a": 0.5}),
            Record(x={"d": 3.0}),
        ]
    )
    model = GaussianDPMM(parallelized=False)
    model.fit(df, GaussianTrainingParameters(max_iterations=2, seed=0))
    assert model.feature_ids == {"b": 0, "a": 1, "c": 2, "d": 3}
    assert model.model_parameters.d == 4


def test_feature_ids_stable_across_fits(gaussian_2d_dataframe):
    """The same training set in the same order yields the same index."""
    params = GaussianTrainingParameters(alpha=1.0, max_iterations=5, seed=1)
    first = GaussianDPMM(parallelized=False)
    first.fit(gaussian_2d_dataframe.copy(), params)
    second = GaussianDPMM(parallelized=False)
    second.fit(gaussian_2d_dataframe.copy(), params)
    assert first.feature_ids == second.feature_ids
    assert list(first.feature_ids.items()) == list(second.feature_ids.items())


def test_gold_standard_classes_collected(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0))
    assert model.model_parameters.gold_standard_classes == ["low", "high"]


# ------------------------------------------------------------------
# Gibbs sampling invariants
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "initialization",
    [Initialization.ONE_CLUSTER_PER_RECORD, Initialization.RANDOM_ASSIGNMENT],
)
def test_sizes_conserved_and_no_empty_clusters(gaussian_2d_dataframe, initialization):
    """After every reassignment sizes sum to n and no cluster is empty."""
    n = len(gaussian_2d_dataframe)
    observed = []

    def check(iteration, rid, clusters):
        observed.append(iteration)
        assert sum(c.size for c in clusters.values()) == n
        assert all(c.size > 0 for c in clusters.values())
        assert all(cid == c.cluster_id for cid, c in clusters.items())

    model = GaussianDPMM(parallelized=False)
    params = GaussianTrainingParameters(
        alpha=1.0,
        max_iterations=10,
        initialization=initialization,
        mu0=[5.0, 5.0],
        seed=3,
    )
    model.fit(gaussian_2d_dataframe, params, on_assignment=check)

    assert len(observed) == n * model.total_iterations
    assert sum(c.size for c in model.clusters.values()) == n


def test_deleted_cluster_ids_never_come_back(scenario_dataframe):
    """A temporary cluster id that disappeared is not handed out again."""
    alive = set(range(len(scenario_dataframe)))
    dead = set()

    def track(iteration, rid, clusters):
        current = set(clusters)
        assert not current & dead
        dead.update(alive - current)
        alive.clear()
        alive.update(current)

    model = GaussianDPMM(parallelized=False)
    model.fit(
        scenario_dataframe,
        GaussianTrainingParameters(alpha=5.0, max_iterations=20, seed=11),
        on_assignment=track,
    )
    assert dead


# ------------------------------------------------------------------
# convergence
# ------------------------------------------------------------------


def test_scenario_two_blobs_low_alpha(scenario_dataframe):
    """alpha=0.01 on {1,1.1,0.9} and {50,50.2,49.8} converges to two clusters of three."""
    model = GaussianDPMM(parallelized=False)
    params = GaussianTrainingParameters(
        alpha=0.01,
        max_iterations=50,
        initialization=Initialization.ONE_CLUSTER_PER_RECORD,
        seed=0,
    )
    model.fit(scenario_dataframe, params)

    assert len(model.clusters) == 2
    assert sorted(c.size for c in model.clusters.values()) == [3, 3]
    assert model.total_iterations < 50
    assert sorted(_groups(scenario_dataframe).values()) == [[0.9, 1.0, 1.1], [49.8, 50.0, 50.2]]


def test_scenario_far_from_origin(caplog):
    """The same two blobs shifted by 1e8 still converge to two clusters of three."""
    offset = 1e8
    df = Dataframe.from_rows([[offset + v] for v in (1.0, 1.1, 0.9, 50.0, 50.2, 49.8)])
    model = GaussianDPMM(parallelized=False)
    params = GaussianTrainingParameters(alpha=0.01, max_iterations=50, mu0=[offset], seed=0)

    with caplog.at_level(logging.WARNING, logger="dpmm_clustering"):
        model.fit(df, params)

    assert "not positive definite" not in caplog.text
    assert sorted(c.size for c in model.clusters.values()) == [3, 3]
    assert model.total_iterations < 50


def test_separable_blobs_terminate_early(separable_dataframe):
    """Tight blobs at 0 and 100 end in exactly two clusters before the budget runs out."""
    model = GaussianDPMM(parallelized=False)
    params = GaussianTrainingParameters(
        alpha=1.0,
        max_iterations=100,
        initialization=Initialization.ONE_CLUSTER_PER_RECORD,
        mu0=[50.0],
        seed=0,
    )
    model.fit(separable_dataframe, params)

    assert model.total_iterations < 100
    assert len(model.clusters) == 2
    assert sorted(_groups(separable_dataframe).values()) == [
        [-0.01, 0.0, 0.01],
        [99.99, 100.0, 100.01],
    ]


@pytest.mark.parametrize("alpha, expected_max", [(0.5, 3), (1.0, 3), (3.0, 10)])
def test_random_assignment_cluster_count(gaussian_2d_dataframe, alpha, expected_max):
    """At most max(1, floor(max(alpha, 1) * ln n)) clusters, none of them empty."""
    n = len(gaussian_2d_dataframe)
    assert expected_max == max(1, math.floor(max(alpha, 1.0) * math.log(n)))

    model = GaussianDPMM(parallelized=False)
    model.model_parameters = ModelParameters(feature_ids={"x1": 0, "x2": 1}, d=2)
    model.training_parameters = GaussianTrainingParameters(
        alpha=alpha, initialization=Initialization.RANDOM_ASSIGNMENT
    )
    entries = list(gaussian_2d_dataframe.entries())
    clusters, assignments, next_id = model._initialize_clusters(entries, np.random.default_rng(0))

    assert next_id == expected_max
    assert 1 <= len(clusters) <= expected_max
    assert all(c.size > 0 for c in clusters.values())
    assert sum(c.size for c in clusters.values()) == n
    assert set(assignments.values()) == set(clusters)


def test_random_assignment_single_record():
    model = GaussianDPMM(parallelized=False)
    model.fit(
        Dataframe.from_rows([[1.0]]),
        GaussianTrainingParameters(initialization=Initialization.RANDOM_ASSIGNMENT, max_iterations=3, seed=0),
    )
    assert len(model.clusters) == 1


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_random_assignment_fit(gaussian_2d_dataframe, seed):
    """Whatever partition the sampler reaches, the stored ensemble is consistent."""
    n = len(gaussian_2d_dataframe)
    first_pass_counts = []

    def observe(iteration, rid, clusters):
        if iteration == 0:
            first_pass_counts.append(len(clusters))

    model = GaussianDPMM(parallelized=False)
    params = GaussianTrainingParameters(
        alpha=1.0,
        max_iterations=100,
        initialization=Initialization.RANDOM_ASSIGNMENT,
        mu0=[5.0, 5.0],
        seed=seed,
    )
    model.fit(gaussian_2d_dataframe, params, on_assignment=observe)

    # 3 initial clusters plus at most one new cluster per reassignment
    assert first_pass_counts[0] <= 3 + 1
    assert 1 <= model.total_iterations <= 100
    assert list(model.clusters) == list(range(len(model.clusters)))
    assert sum(c.size for c in model.clusters.values()) == n
    assert all(c.size > 0 for c in model.clusters.values())
    assert {r.y_predicted for r in gaussian_2d_dataframe} == set(model.clusters)


def test_max_iterations_caps_the_loop(gaussian_2d_dataframe):
    model = GaussianDPMM(parallelized=False)
    model.fit(gaussian_2d_dataframe, GaussianTrainingParameters(alpha=1.0, max_iterations=1, seed=0))
    assert model.total_iterations == 1


def test_seeded_fit_is_reproducible(gaussian_2d_dataframe):
    params = GaussianTrainingParameters(alpha=1.0, max_iterations=20, seed=123)
    a_df, b_df = gaussian_2d_dataframe.copy(), gaussian_2d_dataframe.copy()
    a, b = GaussianDPMM(parallelized=False), GaussianDPMM(parallelized=False)
    a.fit(a_df, params)
    b.fit(b_df, params)
    assert a.total_iterations == b.total_iterations
    assert a_df.predictions() == b_df.predictions()


# ------------------------------------------------------------------
# final ensemble
# ------------------------------------------------------------------


def test_final_ids_are_dense_and_written_back(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0))

    assert list(model.clusters) == list(range(len(model.clusters)))
    for cid, cluster in model.clusters.items():
        assert cluster.cluster_id == cid
    sizes = {}
    for r in scenario_dataframe:
        sizes[r.y_predicted] = sizes.get(r.y_predicted, 0) + 1
    assert sizes == {cid: c.size for cid, c in model.clusters.items()}


def test_cluster_labels_from_gold_standard(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0))
    labels = {c.label_y for c in model.clusters.values()}
    assert labels == {"low", "high"}


def test_unlabeled_data_leaves_cluster_labels_empty():
    df = Dataframe.from_rows([[1.0], [1.1], [0.9]])
    model = GaussianDPMM(parallelized=False)
    model.fit(df, GaussianTrainingParameters(alpha=0.01, max_iterations=20, seed=0))
    assert all(c.label_y is None for c in model.clusters.values())
    assert model.model_parameters.gold_standard_classes == []


def test_warm_start_appends_clusters(scenario_dataframe):
    params = GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0)
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, params)
    first_count = len(model.clusters)

    more = Dataframe.from_rows([[200.0], [200.1], [199.9]], ["far", "far", "far"])
    model.fit(more, params, warm_start=True)

    assert list(model.clusters) == list(range(len(model.clusters)))
    assert len(model.clusters) > first_count
    assert all(r.y_predicted >= first_count for r in more)
    assert model.model_parameters.gold_standard_classes == ["low", "high", "far"]


def test_warm_start_rejects_new_features(scenario_dataframe):
    params = GaussianTrainingParameters(alpha=0.01, max_iterations=10, seed=0)
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, params)
    with pytest.raises(InvalidArgumentError, match="unseen features"):
        model.fit(Dataframe([Record(x={"other": 1.0})]), params, warm_start=True)


def test_failed_fit_keeps_trained_model(scenario_dataframe):
    """A non-numeric value is rejected before the trained ensemble is replaced."""
    params = GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0)
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, params)
    clusters, feature_ids = dict(model.clusters), dict(model.feature_ids)

    bad = Dataframe([Record(x={0: "red"}), Record(x={0: 1.0})])
    with pytest.raises(InvalidArgumentError, match="non-numeric value 'red'"):
        model.fit(bad, params)
    with pytest.raises(InvalidArgumentError, match="non-numeric value 'red'"):
        model.fit(bad, params, warm_start=True)

    assert model.clusters == clusters
    assert model.feature_ids == feature_ids
    assert model.training_parameters is params
    assert all(r.y_predicted is None for r in bad)
    assert model.predict_record(Record(x={0: 50.0})).y in clusters


def test_fit_interrupted_during_sampling_restores_model(scenario_dataframe):
    params = GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0)
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, params)
    before = model.model_parameters

    def interrupt(iteration, rid, clusters):
        raise RuntimeError("stop")

    more = Dataframe.from_rows([[200.0], [200.1]])
    with pytest.raises(RuntimeError, match="stop"):
        model.fit(more, params, warm_start=True, on_assignment=interrupt)

    assert model.model_parameters is before
    assert len(model.clusters) == 2
    assert all(r.y_predicted is None for r in more)


# ------------------------------------------------------------------
# prediction
# ------------------------------------------------------------------


@pytest.fixture
def trained_scenario_model(scenario_dataframe):
    model = GaussianDPMM(parallelized=False)
    model.fit(scenario_dataframe, GaussianTrainingParameters(alpha=0.01, max_iterations=50, seed=0))
    return model


def test_predict_record_is_deterministic(trained_scenario_model):
    r = Record(x={0: 49.0})
    first = trained_scenario_model.predict_record(r)
    second = trained_scenario_model.predict_record(r)
    assert first == second
    assert sum(first.y_predicted_probabilities.values()) == pytest.approx(1.0)
    assert set(first.y_predicted_probabilities) == set(trained_scenario_model.clusters)


def test_predict_picks_nearest_blob(trained_scenario_model):
    high = trained_scenario_model.predict_record(Record(x={0: 51.0}))
    low = trained_scenario_model.predict_record(Record(x={0: 0.5}))
    assert trained_scenario_model.clusters[high.y].label_y == "high"
    assert trained_scenario_model.clusters[low.y].label_y == "low"
    assert high.y_predicted_probabilities[high.y] > 0.99


def test_predict_writes_back_in_order(trained_scenario_model):
    df = Dataframe.from_rows([[0.8], [52.0], [1.2], [48.0]])
    trained_scenario_model.predict(df)
    labels = [trained_scenario_model.clusters[r.y_predicted].label_y for r in df]
    assert labels == ["low", "high", "low", "high"]
    assert all(r.y_predicted_probabilities is not None for r in df)


def test_parallel_and_sequential_predictions_match(gaussian_2d_dataframe):
    model = GaussianDPMM(parallelized=True, max_workers=4)
    model.fit(
        gaussian_2d_dataframe.copy(),
        GaussianTrainingParameters(alpha=1.0, max_iterations=50, mu0=[5.0, 5.0], seed=2),
    )

    parallel_df = gaussian_2d_dataframe.copy()
    model.predict(parallel_df)

    model.parallelized = False
    sequential_df = gaussian_2d_dataframe.copy()
    model.predict(sequential_df)

    assert parallel_df.predictions() == sequential_df.predictions()
    for a, b in zip(parallel_df, sequential_df):
        assert a.y_predicted_probabilities == b.y_predicted_probabilities


def test_tie_broken_by_first_cluster():
    """Equal scores select the cluster inserted first."""
    model = GaussianDPMM(parallelized=False)
    model.model_parameters.feature_ids = {0: 0}
    model.model_parameters.d = 1
    for cid in (0, 1):
        model.model_parameters.cluster_map[cid] = GaussianCluster(cid, 1)
    prediction = model.predict_record(Record(x={0: 3.0}))
    assert prediction.y == 0
    assert prediction.y_predicted_probabilities == {0: 0.5, 1: 0.5}


# ------------------------------------------------------------------
# multinomial
# ------------------------------------------------------------------


def test_multinomial_dpmm_separates_topics(word_count_dataframe):
    model = MultinomialDPMM(parallelized=False)
    params = MultinomialTrainingParameters(alpha=1.0, max_iterations=100, alpha_words=0.1, seed=0)
    model.fit(word_count_dataframe, params)

    assert len(model.clusters) >= 2
    by_cluster = {}
    for r in word_count_dataframe:
        by_cluster.setdefault(r.y_predicted, set()).add(r.y)
    assert all(len(topics) == 1 for topics in by_cluster.values())

    doc = Record(x={"ball": 2, "team": 1})
    prediction = model.predict_record(doc)
    assert model.clusters[prediction.y].label_y == "sports"


# ------------------------------------------------------------------
# config
# ------------------------------------------------------------------


def test_training_parameters_from_config(monkeypatch):
    monkeypatch.setenv("DPMM_ALPHA", "0.5")
    monkeypatch.setenv("DPMM_MAX_ITERATIONS", "25")
    monkeypatch.setenv("DPMM_INITIALIZATION", "random_assignment")
    monkeypatch.setenv("DPMM_SEED", "9")
    cfg = Config()

    params = GaussianTrainingParameters.from_config(cfg, kappa0=2)
    assert isinstance(params, GaussianTrainingParameters)
    assert params.alpha == 0.5
    assert params.max_iterations == 25
    assert params.initialization is Initialization.RANDOM_ASSIGNMENT
    assert params.seed == 9
    assert params.kappa0 == 2

    base = TrainingParameters.from_config(cfg, alpha=3.0)
    assert base.alpha == 3.0
