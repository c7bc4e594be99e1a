"""
StablePay webhook delivery and retry service.

Signs and delivers merchant payment-event webhooks, retrying failed
deliveries on a fixed backoff table until they succeed or exhaust their
attempts.
"""

__version__ = "0.1.0"
