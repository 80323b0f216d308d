"""Payments service helpers."""

from .zenopay import (
    ZenoPayClient,
    get_zenopay_client,
    verify_webhook_api_key,
)

__all__ = [
    "ZenoPayClient",
    "get_zenopay_client",
    "verify_webhook_api_key",
]
