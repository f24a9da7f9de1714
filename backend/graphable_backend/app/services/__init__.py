"""Application services wrapping the graphpipe engine."""
