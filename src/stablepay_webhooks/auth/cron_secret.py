"""
Module: cron_secret.py
Description: Shared-secret authentication for the cron trigger.

The external scheduler calls the trigger endpoint with
"Authorization: Bearer <CRON_SECRET>". The token is compared in constant
time against the configured secret. The same guard protects the operator
delivery-log endpoints.

Key Components:
- extract_bearer_token(): Parse the Authorization header
- verify_cron_secret(): Constant-time comparison
- require_cron_secret(): FastAPI dependency raising 401

Dependencies: fastapi, hmac, typing
Author: StablePay Webhooks Team
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException
from fastapi import status as status_codes

from stablepay_webhooks.config.settings import settings
from stablepay_webhooks.utils.logger import get_logger

logger = get_logger(__name__)


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """
    Extract the token from a Bearer Authorization header.

    Args:
        auth_header: Raw Authorization header value

    Returns:
        Token string if present, None otherwise
    """
    if not auth_header:
        return None

    if auth_header.startswith('Bearer '):
        token = auth_header[7:].strip()
        if token:
            return token

    return None


def verify_cron_secret(token: Optional[str], expected: Optional[str]) -> bool:
    """
    Check a bearer token against the configured secret.

    An unset secret rejects every token so a misconfigured deployment
    cannot be triggered anonymously.
    """
    if not expected:
        logger.warning("CRON_SECRET is not configured, rejecting trigger call")
        return False
    if not token:
        return False
    return hmac.compare_digest(token.encode('utf-8'), expected.encode('utf-8'))


async def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """
    FastAPI dependency guarding trigger and operator endpoints.

    Raises:
        HTTPException: 401 if the bearer token does not match
    """
    if not verify_cron_secret(extract_bearer_token(authorization), settings.cron_secret):
        logger.warning("Unauthorized trigger call rejected")
        raise HTTPException(
            status_code=status_codes.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
