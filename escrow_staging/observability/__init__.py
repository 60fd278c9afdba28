"""Structured logging and Prometheus metrics for the staging pipeline."""
