"""Builders for registry workload configuration."""
