"""Monitoring: Prometheus counters for the compliance services."""
