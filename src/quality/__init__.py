"""Ingestion-time data quality scoring.

One confidence score per metric submission, derived from its provenance,
plus a completeness/timeliness/accuracy/consistency breakdown.
"""
