"""
Exception types raised by the clustering engine.

- InvalidArgumentError: bad configuration or input, raised before any state
  is mutated
- InconsistentStateError: internal bookkeeping broken (missing feature index,
  unknown cluster id, removal from an empty cluster)
- NumericDegeneracyError: a score vector with no finite entry
"""


class InvalidArgumentError(ValueError):
    """Invalid training parameter, empty dataset or untrained model."""


class InconsistentStateError(RuntimeError):
    """Cluster ensemble or feature index in a state that cannot be scored."""


class NumericDegeneracyError(ArithmeticError):
    """Log scores that cannot be normalized (NaN or no finite value)."""
