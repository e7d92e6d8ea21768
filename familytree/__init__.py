"""
Backend package for the family tree API.

This package provides a FastAPI application with store, credential and mail
abstractions so the service can run against Postgres and a hosted auth
service in production, or fully in memory for development and tests.
"""
