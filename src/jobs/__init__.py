"""Scheduled batch jobs (daily goal evaluation)."""
