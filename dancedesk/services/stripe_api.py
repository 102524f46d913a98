"""Minimal Stripe REST calls over httpx: checkout sessions and Connect accounts."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from dancedesk.core.config import get_settings
from dancedesk.services.errors import ProviderError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def _flatten(params: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Encode nested params the way Stripe's form API expects (a[b][0][c]=v)."""
    flat: dict[str, str] = {}
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        elif isinstance(value, list):
            for i, item in enumerate(value):
                if isinstance(item, dict):
                    flat.update(_flatten(item, f"{name}[{i}]"))
                else:
                    flat[f"{name}[{i}]"] = str(item)
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


async def _request(
    method: str,
    path: str,
    *,
    params: dict[str, Any] | None = None,
    data: dict[str, Any] | None = None,
    stripe_account: str | None = None,
) -> dict:
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ProviderError("STRIPE_SECRET_KEY is not configured")

    headers = {"Stripe-Account": stripe_account} if stripe_account else {}
    try:
        async with httpx.AsyncClient(
            base_url=settings.stripe_api_base,
            auth=(settings.stripe_secret_key, ""),
            timeout=20,
        ) as client:
            resp = await client.request(
                method,
                path,
                params=_flatten(params) if params else None,
                data=_flatten(data) if data else None,
                headers=headers,
            )
    except httpx.HTTPError as exc:
        raise ProviderError(f"Stripe request failed: {exc}") from exc

    if not resp.is_success:
        try:
            message = resp.json().get("error", {}).get("message", resp.text)
        except ValueError:
            message = resp.text
        raise ProviderError(f"Stripe error: {message}", status_code=resp.status_code)
    return resp.json()


async def iter_checkout_sessions(created_gte: int) -> AsyncIterator[dict]:
    """Every checkout session created at or after a unix timestamp, newest first."""
    starting_after: str | None = None
    while True:
        page = await _request(
            "GET",
            "/checkout/sessions",
            params={
                "limit": PAGE_SIZE,
                "created": {"gte": created_gte},
                "starting_after": starting_after,
            },
        )
        sessions = page.get("data", [])
        for item in sessions:
            yield item
        if not page.get("has_more") or not sessions:
            return
        starting_after = sessions[-1]["id"]


async def create_checkout_session(
    *,
    name: str,
    description: str,
    amount: int,
    currency: str,
    metadata: dict[str, str],
    success_url: str,
    cancel_url: str,
    customer_email: str = "",
    destination_account: str | None = None,
) -> dict:
    """One-off payment session; destination charge when the school is connected."""
    payload: dict[str, Any] = {
        "mode": "payment",
        "line_items": [
            {
                "quantity": 1,
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": amount,
                    "product_data": {
                        "name": name,
                        "description": description or None,
                        "metadata": {"passId": metadata.get("passId", "")},
                    },
                },
            }
        ],
        "metadata": metadata,
        "success_url": success_url,
        "cancel_url": cancel_url or success_url,
        "customer_email": customer_email or None,
    }
    if destination_account:
        payload["payment_intent_data"] = {
            "transfer_data": {"destination": destination_account},
        }
    session = await _request("POST", "/checkout/sessions", data=payload)
    logger.info("Created Stripe checkout session %s", session.get("id"))
    return session


async def retrieve_account(account_id: str) -> dict:
    return await _request("GET", f"/accounts/{account_id}")
