"""Graphable backend service."""
