"""Time-series indexing and windowed aggregation of metric observations."""
