"""Graphable FastAPI application."""
