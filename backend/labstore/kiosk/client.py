"""
HTTP client for the store backend, and the server-sent-events change source.

Server error bodies ({"error", "code", "details"}) are turned back into the
matching StoreError subclass, so kiosk code handles the same exceptions
whether it talks to the services in-process or over HTTP. Transport
failures become StorageUnavailable.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Optional

import httpx

from ..errors import (
    ConflictError,
    DuplicateCardBinding,
    InsufficientFunds,
    InsufficientStock,
    NotFoundError,
    RecipeCycleDetected,
    StorageUnavailable,
    StoreError,
    ValidationError,
)
from ..realtime import CHANNEL_ERROR, SUBSCRIBED, TIMED_OUT

logger = logging.getLogger(__name__)


def error_from_response(response: httpx.Response) -> StoreError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error") or f"HTTP {response.status_code}"
    code = body.get("code")
    details = body.get("details") or {}

    if code == "InsufficientFunds":
        return InsufficientFunds(details.get("balance", 0), details.get("total", 0))
    if code == "InsufficientStock":
        return InsufficientStock(
            details.get("product_id"),
            details.get("requested_quantity", 0),
            details.get("available_quantity", 0),
            details.get("product_name"),
        )
    if code == "DuplicateCardBinding":
        return DuplicateCardBinding(details.get("uid"), details.get("bound_member_id"))
    if code == "RecipeCycleDetected":
        return RecipeCycleDetected(details.get("path", []))
    if response.status_code == 404:
        return NotFoundError(message, details)
    if response.status_code == 409:
        return ConflictError(message, details)
    if response.status_code == 503:
        return StorageUnavailable(message)
    if response.status_code == 400:
        return ValidationError(message, details)
    return StoreError(message, details)


class StoreClient:
    def __init__(
        self,
        base_url: str,
        *,
        admin_token: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.admin_token = admin_token
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, admin: bool = False, **kwargs) -> dict:
        headers = kwargs.pop("headers", {})
        if admin:
            headers["Authorization"] = f"Bearer {self.admin_token}"
        try:
            response = self._client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise StorageUnavailable(f"Store unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise error_from_response(response)
        return response.json()

    # -- kiosk ----------------------------------------------------------

    def list_members(self) -> list[dict]:
        return self._request("GET", "/api/members")["groups"]

    def member_for_card(self, uid: str) -> Optional[dict]:
        try:
            return self._request("GET", "/api/members/by-card", params={"uid": uid})["member"]
        except NotFoundError:
            return None

    def catalog(self) -> list[dict]:
        return self._request("GET", "/api/products")["items"]

    def settle(self, member_id: int, items: list[dict], *, kiosk_id: int | None = None) -> dict:
        payload = {"member_id": member_id, "items": items}
        if kiosk_id is not None:
            payload["kiosk_id"] = kiosk_id
        return self._request("POST", "/api/checkout/settle", json=payload)

    def get_kiosk_uid(self, kiosk_id: int) -> Optional[str]:
        return self._request("GET", f"/api/kiosk/{kiosk_id}/status")["status"]["current_uid"]

    def set_kiosk_uid(self, kiosk_id: int, uid: Optional[str]) -> dict:
        return self._request("PUT", f"/api/kiosk/{kiosk_id}/status", json={"current_uid": uid})["status"]

    # -- admin ----------------------------------------------------------

    def bind_card(self, member_id: int, uid: str) -> dict:
        return self._request("POST", f"/api/members/{member_id}/card", admin=True, json={"uid": uid})["member"]


class MemberView:
    """Attribute view over a member dict, for presence lookups."""

    def __init__(self, data: dict):
        self.id = data["id"]
        self.name = data["name"]
        self.is_active = bool(data.get("is_active", True))


class SseSubscription:
    def __init__(self, source: "HttpChangeSource", name: str, callback, on_status):
        self.source = source
        self.name = name
        self.callback = callback
        self.on_status = on_status
        self._stopped = threading.Event()
        self._response: httpx.Response | None = None
        self._thread = threading.Thread(target=self._run, name=f"sse-{name}", daemon=True)
        self._thread.start()

    def unsubscribe(self) -> None:
        self._stopped.set()
        response = self._response
        if response is not None:
            response.close()

    def _run(self) -> None:
        url = f"{self.source.base_url}/api/kiosk/{self.source.kiosk_id}/events"
        status, error = CHANNEL_ERROR, None
        try:
            with self.source.client.stream("GET", url, params={"channel": self.name}) as response:
                self._response = response
                response.raise_for_status()
                if self._stopped.is_set():
                    return
                self.on_status(SUBSCRIBED, None)
                for line in response.iter_lines():
                    if self._stopped.is_set():
                        return
                    if not line.startswith("data:"):
                        continue
                    try:
                        payload = json.loads(line[5:].strip())
                    except ValueError:
                        logger.warning("Malformed event on %s", self.name)
                        continue
                    self.callback(payload)
        except httpx.TimeoutException as exc:
            status, error = TIMED_OUT, exc
        except httpx.HTTPError as exc:
            error = exc
        if not self._stopped.is_set():
            self.on_status(status, error)


class HttpChangeSource:
    """Kiosk-status changes streamed from GET /api/kiosk/<id>/events."""

    def __init__(self, base_url: str, kiosk_id: int, *, client: httpx.Client | None = None,
                 read_timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.kiosk_id = kiosk_id
        self.client = client or httpx.Client(timeout=httpx.Timeout(5.0, read=read_timeout))

    def subscriber(self, callback: Callable[[dict], None]):
        def _subscribe(name: str, on_status) -> SseSubscription:
            return SseSubscription(self, name, callback, on_status)
        return _subscribe

    def close(self) -> None:
        self.client.close()
