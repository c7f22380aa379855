"""
dpmm-clustering - Core Package

Non-parametric Bayesian clustering with Dirichlet Process Mixture Models
trained by Collapsed Gibbs Sampling.

This package provides:
- Dataframe/Record data objects consumed by the algorithms
- Gaussian and Multinomial DPMM models
- Validation metrics and k-fold cross validation
"""

__version__ = "0.1.0"

from .dataobjects import Dataframe, Record
from .exceptions import InconsistentStateError, InvalidArgumentError, NumericDegeneracyError

# Explicitly import subpackages to ensure they're discoverable
from . import algorithms
from . import dataobjects
from . import utils

__all__ = [
    "Dataframe",
    "Record",
    "InvalidArgumentError",
    "InconsistentStateError",
    "NumericDegeneracyError",
    "algorithms",
    "dataobjects",
    "utils",
]
