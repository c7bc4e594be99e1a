"""
Module: auth
Description: Package initialization for authentication.

This package contains the shared-secret guard used by the cron trigger
and the operator endpoints:
- cron_secret: Bearer token extraction and constant-time verification
"""

__all__ = []
