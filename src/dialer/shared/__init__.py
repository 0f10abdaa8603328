"""Shared infrastructure: database, logging, errors, middleware."""
