"""
Notification Service - Slack webhook alerts

Best-effort, fire-and-forget: posts run on a small background pool, never
block the caller and never raise into it. Delivery is at-most-once per call;
duplicates from repeated low-stock sales are accepted.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

import httpx
from flask import current_app

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")


def low_stock_message(product_name: str, remaining_stock: int) -> dict:
    return {
        "text": (
            ":warning: *Low stock* :warning:\n\n"
            f"Product: *{product_name}*\n"
            f"Remaining: *{remaining_stock}*\n\n"
            "Time for a shopping run."
        )
    }


def charge_message(member_name: str, amount: int, cash_box_balance: int) -> dict:
    return {
        "text": (
            ":moneybag: *Charge* :moneybag:\n\n"
            f"*{member_name}* was charged *{amount:,}*.\n"
            "----------------\n"
            f"Cash box balance: *{cash_box_balance:,}*"
        )
    }


def _post(url: str, payload: dict, timeout: float) -> bool:
    try:
        response = httpx.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
        return True
    except httpx.HTTPError as exc:
        logger.warning("Notification delivery failed: %s", exc)
        return False


def _dispatch(payload: dict) -> Future | None:
    url = current_app.config.get("SLACK_WEBHOOK_URL")
    if not url:
        logger.debug("SLACK_WEBHOOK_URL not set; notification dropped")
        return None
    timeout = float(current_app.config.get("NOTIFY_TIMEOUT_SECONDS", 5.0))
    try:
        return _executor.submit(_post, url, payload, timeout)
    except RuntimeError:
        # Executor shut down (interpreter exit)
        logger.warning("Notification executor unavailable; notification dropped")
        return None


def notify_low_stock(product_name: str, remaining_stock: int) -> Future | None:
    return _dispatch(low_stock_message(product_name, remaining_stock))


def notify_charge(member_name: str, amount: int, cash_box_balance: int) -> Future | None:
    return _dispatch(charge_message(member_name, amount, cash_box_balance))
