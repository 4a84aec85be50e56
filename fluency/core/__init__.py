"""Core engine primitives (time source, persisted models, and the event bus).

Kept free of FastAPI and Redis concerns so the scheduler can be reused by API routes, scripts, and tests.
"""
