"""
Backend package for the lab collaboration hub.

This package provides a FastAPI application for shared notes and
channel-based real-time chat, with storage, database and cache
abstractions so the same code runs in-memory for tests and against
Postgres/Redis/S3 in production.
"""
