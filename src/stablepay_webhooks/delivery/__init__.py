"""
Package: delivery
Description: Webhook delivery for the StablePay webhook service.

Provides payload signing, single-attempt push delivery, the fixed-table
retry scheduler and the batch retry driver.
"""
