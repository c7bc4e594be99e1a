"""
Module: utils
Description: Package initialization for utility functions.

This package contains shared helpers used throughout the webhook service:
- logger: Structured logging configuration and helpers
- metrics: CloudWatch custom metrics publishing
- timestamps: UTC timestamp serialization
- batch_helpers: Chunking for DynamoDB batch requests
"""

__all__ = []
