"""Canonical catalog: style registry, search, supplier aggregation."""
