"""HTTP API for Graphable."""
