"""Shared helpers for payment webhook payloads."""

from __future__ import annotations

from typing import Any, Dict, Optional

from core.subscription_constants import TransactionStatus, parse_transaction_status


def _data(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data")
    return data if isinstance(data, dict) else {}


def resolve_order_id(event: Dict[str, Any]) -> Optional[str]:
    data = _data(event)
    order_id = event.get("order_id") or event.get("orderId") or data.get("order_id") or data.get("orderId")
    if isinstance(order_id, str) and order_id.strip():
        return order_id.strip()
    return None


def resolve_raw_status(event: Dict[str, Any]) -> Optional[str]:
    data = _data(event)
    status_value = event.get("payment_status") or event.get("status") or data.get("payment_status") or data.get("status")
    if isinstance(status_value, str) and status_value.strip():
        return status_value.strip().upper()
    return None


def resolve_payment_status(event: Dict[str, Any]) -> Optional[TransactionStatus]:
    return parse_transaction_status(resolve_raw_status(event))


def resolve_gateway_reference(event: Dict[str, Any]) -> Optional[str]:
    data = _data(event)
    reference = event.get("reference") or event.get("transid") or data.get("reference") or data.get("transid")
    if isinstance(reference, (str, int)) and str(reference).strip():
        return str(reference).strip()
    return None


__all__ = [
    "resolve_gateway_reference",
    "resolve_order_id",
    "resolve_payment_status",
    "resolve_raw_status",
]
