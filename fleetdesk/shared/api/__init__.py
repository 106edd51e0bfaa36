"""
Shared API components: middleware and exception handlers.
"""
