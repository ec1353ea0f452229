"""
Infrastructure Layer
====================

Shared adapters: database engine and sessions, LLM gateways and the
complaint similarity index.
"""
