"""Insight rollup aggregation.

This package turns scanned deployment records into data points (`metrics`),
aligns them to calendar buckets (`buckets`), folds them into persisted
chunks (`merge`), and drives the bucket-by-bucket walk (`collector`).
"""
