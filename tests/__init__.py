"""
Test suite for dpmm-clustering.

This package contains all tests organized by component:
- test_algorithms/: sampling, normalization, clusters, DPMM, validation
- test_dataobjects/: Dataframe and Record
"""
