"""Middleware, exception handlers and FastAPI dependencies."""
