"""
Tabular data objects consumed by the clustering algorithms.
"""

from .record import Record
from .dataframe import Dataframe, check_numeric, parse_record

__all__ = [
    "Record",
    "Dataframe",
    "parse_record",
    "check_numeric",
]
