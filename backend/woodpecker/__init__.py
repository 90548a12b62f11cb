"""Application package for the Woodpecker chess puzzle trainer backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Grading and SAN handling live in `utils` and
have no database dependency; individual modules contain the concrete
implementations and documentation.
"""
