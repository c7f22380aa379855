"""
Pytest configuration and shared fixtures.

This file is automatically discovered by pytest and provides fixtures
available to all test modules.
"""

import numpy as np
import pytest

from dpmm_clustering.dataobjects import Dataframe, Record


@pytest.fixture
def scenario_dataframe():
    """
    Two well-separated 1-D blobs of three points each.

    Labels "low" / "high" mark the blob each point came from.
    """
    xs = [[1.0], [1.1], [0.9], [50.0], [50.2], [49.8]]
    ys = ["low", "low", "low", "high", "high", "high"]
    return Dataframe.from_rows(xs, ys)


@pytest.fixture
def separable_dataframe():
    """Tight blobs at x=0 and x=100 (three points each)."""
    xs = [[0.0], [0.01], [-0.01], [100.0], [100.01], [99.99]]
    ys = [0, 0, 0, 1, 1, 1]
    return Dataframe.from_rows(xs, ys)


@pytest.fixture
def gaussian_2d_dataframe():
    """Two 2-D Gaussian blobs of 15 points each, labelled "a" and "b"."""
    rng = np.random.default_rng(7)
    a = rng.normal(loc=[0.0, 0.0], scale=0.2, size=(15, 2))
    b = rng.normal(loc=[10.0, 10.0], scale=0.2, size=(15, 2))
    df = Dataframe()
    for row in a:
        df.add(Record(x={"x1": float(row[0]), "x2": float(row[1])}, y="a"))
    for row in b:
        df.add(Record(x={"x1": float(row[0]), "x2": float(row[1])}, y="b"))
    return df


@pytest.fixture
def word_count_dataframe():
    """Bag-of-words documents about two disjoint topics."""
    sports = {"ball": 4, "goal": 3, "team": 2}
    cooking = {"oven": 4, "flour": 3, "sugar": 2}
    df = Dataframe()
    for i in range(4):
        df.add(Record(x={k: v + (i % 2) for k, v in sports.items()}, y="sports"))
    for i in range(4):
        df.add(Record(x={k: v + (i % 2) for k, v in cooking.items()}, y="cooking"))
    return df
