"""ZenoPay mobile-money gateway helper."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.env import env_bool, env_float, env_str
from core.logging import get_logger
from services.errors import ExternalGatewayError

logger = get_logger(__name__)

DEFAULT_ZENOPAY_BASE_URL = "https://zenoapi.com"
_CREATE_PAYMENT_PATH = "/api/payments/mobile_money_tanzania"
DEFAULT_TIMEOUT_SECONDS = 15.0


@dataclass(slots=True)
class ZenoPayClient:
    """HTTP client wrapper for the ZenoPay API."""

    api_key: str
    base_url: str = DEFAULT_ZENOPAY_BASE_URL
    webhook_url: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        headers = {"x-api-key": self.api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("ZenoPay request timed out after %.1fs: %s %s", self.timeout, method, url)
            raise ExternalGatewayError("payments.gateway_timeout", "Payment gateway timed out.") from exc
        except httpx.HTTPError as exc:
            logger.warning("ZenoPay transport error: %s", exc)
            raise ExternalGatewayError("payments.gateway_unreachable", "Payment gateway is unreachable.") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {"body": response.text}
        if not isinstance(payload, dict):
            payload = {"body": payload}

        if response.status_code >= 400:
            message = payload.get("message") or payload.get("error") or "Payment gateway request failed."
            logger.warning("ZenoPay API error %s: %s", response.status_code, payload)
            raise ExternalGatewayError(
                "payments.gateway_error", str(message), status_code=response.status_code, payload=payload
            )
        return payload

    async def create_payment(
        self,
        *,
        order_id: str,
        buyer_name: Optional[str],
        buyer_phone: Optional[str],
        amount: int,
        buyer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Push a mobile-money payment request to the buyer's phone."""
        request_payload: Dict[str, Any] = {
            "order_id": order_id,
            "buyer_name": buyer_name or "",
            "buyer_phone": buyer_phone or "",
            "buyer_email": buyer_email or "",
            "amount": int(amount),
        }
        if self.webhook_url:
            request_payload["webhook_url"] = self.webhook_url
        logger.info("Creating ZenoPay payment orderId=%s amount=%s", order_id, amount)
        payload = await self._request("POST", _CREATE_PAYMENT_PATH, json=request_payload)
        status_value = str(payload.get("status") or "").strip().lower()
        if status_value and status_value != "success":
            message = payload.get("message") or "Payment gateway rejected the request."
            raise ExternalGatewayError("payments.gateway_rejected", str(message), payload=payload)
        return payload


def get_zenopay_client() -> ZenoPayClient:
    api_key = env_str("ZENOPAY_API_KEY")
    if not api_key:
        raise ExternalGatewayError("payments.config_missing", "ZENOPAY_API_KEY is not configured.")
    base_url = env_str("ZENOPAY_BASE_URL", DEFAULT_ZENOPAY_BASE_URL) or DEFAULT_ZENOPAY_BASE_URL
    return ZenoPayClient(
        api_key=api_key,
        base_url=base_url,
        webhook_url=env_str("ZENOPAY_WEBHOOK_URL"),
        timeout=env_float("ZENOPAY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, minimum=1.0),
    )


def verify_webhook_api_key(provided: Optional[str], *, expected: Optional[str] = None) -> bool:
    """Check the ``x-api-key`` header ZenoPay echoes back on webhook deliveries.

    Verification is skipped (returns True) when ``ZENOPAY_WEBHOOK_REQUIRE_KEY``
    is disabled.
    """
    if not env_bool("ZENOPAY_WEBHOOK_REQUIRE_KEY", True):
        return True
    secret = expected if expected is not None else env_str("ZENOPAY_API_KEY")
    if not secret:
        raise RuntimeError("ZENOPAY_API_KEY is required to verify payment webhooks.")
    if not provided:
        return False
    return hmac.compare_digest(provided.strip().encode("utf-8"), secret.encode("utf-8"))


__all__ = [
    "DEFAULT_ZENOPAY_BASE_URL",
    "ZenoPayClient",
    "get_zenopay_client",
    "verify_webhook_api_key",
]
