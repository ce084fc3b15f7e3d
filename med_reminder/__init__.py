"""
Medication reminder backend.

This package provides a FastAPI application that stores a user's
medication schedule entries and serves them to the mobile client, with
pluggable document-store, SQL and in-memory persistence.
"""
