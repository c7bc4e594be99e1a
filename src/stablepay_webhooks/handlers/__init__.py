"""
Module: handlers
Description: Package initialization for API endpoint handlers.

This package contains FastAPI route handlers for the webhook service:
- cron: Bearer-guarded trigger that runs one retry batch
- logs: Operator delivery-log, manual retry and test webhook endpoints

Handlers receive the shared store through dependency injection.
"""

__all__ = []
