"""Core narrative primitives (context stacking, world-state rendering).

Kept free of FastAPI and redis concerns so it can be reused by API routes,
the background worker, and tests.
"""
