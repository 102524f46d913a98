"""Vipps eCom v2 calls over httpx: token, initiate payment, payment details."""

from __future__ import annotations

import logging
from enum import StrEnum

import httpx

from dancedesk.core.config import get_settings
from dancedesk.services.errors import ProviderError

logger = logging.getLogger(__name__)


class VippsPaymentStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


_COMPLETED = {"SALE", "CAPTURE", "CAPTURED"}
_FAILED = {"CANCEL", "CANCELLED", "VOID", "FAILED", "REJECTED"}


def map_vipps_status(vipps_status: str | None) -> VippsPaymentStatus:
    status = (vipps_status or "").upper()
    if status in _COMPLETED:
        return VippsPaymentStatus.COMPLETED
    if status in _FAILED:
        return VippsPaymentStatus.FAILED
    return VippsPaymentStatus.PENDING


def transaction_status(details: dict) -> tuple[str | None, str | None, int | None]:
    """(status, transaction id, amount in øre) from a payment-details body.

    Accepts both the ``transactionInfo`` shape and the
    ``transactionLogHistory`` list, where the newest successful entry wins.
    """
    info = details.get("transactionInfo")
    if info:
        return info.get("status"), info.get("transactionId"), info.get("amount")
    history = [
        entry for entry in details.get("transactionLogHistory", [])
        if entry.get("operationSuccess", True)
    ]
    if not history:
        return None, None, None
    latest = max(history, key=lambda e: e.get("timeStamp", ""))
    return latest.get("operation"), latest.get("transactionId"), latest.get("amount")


def _base_headers() -> dict[str, str]:
    settings = get_settings()
    return {
        "Ocp-Apim-Subscription-Key": settings.vipps_subscription_key,
        "Merchant-Serial-Number": settings.vipps_merchant_serial_number,
    }


async def _access_token(client: httpx.AsyncClient) -> str:
    settings = get_settings()
    resp = await client.post(
        "/accesstoken/get",
        headers={
            "client_id": settings.vipps_client_id,
            "client_secret": settings.vipps_client_secret,
            "Ocp-Apim-Subscription-Key": settings.vipps_subscription_key,
        },
    )
    if not resp.is_success:
        raise ProviderError(
            f"Failed to get Vipps access token: {resp.status_code} {resp.text}",
            status_code=resp.status_code,
        )
    return resp.json()["access_token"]


async def _call(method: str, path: str, json: dict | None = None) -> dict:
    settings = get_settings()
    if not settings.vipps_client_id:
        raise ProviderError("Vipps is not configured")
    try:
        async with httpx.AsyncClient(base_url=settings.vipps_api_base, timeout=20) as client:
            token = await _access_token(client)
            resp = await client.request(
                method,
                path,
                json=json,
                headers={**_base_headers(), "Authorization": f"Bearer {token}"},
            )
    except httpx.HTTPError as exc:
        raise ProviderError(f"Vipps request failed: {exc}") from exc
    if not resp.is_success:
        raise ProviderError(
            f"Vipps error: {resp.status_code} {resp.text}", status_code=resp.status_code,
        )
    return resp.json()


async def initiate_payment(
    order_id: str, amount: int, text: str, fallback_url: str
) -> dict:
    settings = get_settings()
    body = {
        "customerInfo": {},
        "merchantInfo": {
            "merchantSerialNumber": settings.vipps_merchant_serial_number,
            "callbackPrefix": settings.vipps_callback_prefix,
            "fallBack": fallback_url,
            "authToken": settings.vipps_callback_token or None,
        },
        "transaction": {
            "orderId": order_id,
            "amount": amount,
            "transactionText": text[:100],
        },
    }
    result = await _call("POST", "/ecomm/v2/payments", json=body)
    logger.info("Initiated Vipps payment %s", order_id)
    return result


async def get_payment_details(order_id: str) -> dict:
    return await _call("GET", f"/ecomm/v2/payments/{order_id}/details")
