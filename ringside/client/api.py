from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ApiError, NetworkError
from ..model.booking import BookingData, PaymentSession, TicketConfig

RINGSIDE_API_URL = os.environ.get("RINGSIDE_API_URL", "http://localhost:8000")
API_PREFIX = "/api"


def _error_fields(body: Any) -> tuple[str, str]:
    # FastAPI wraps HTTPException details as {"detail": ...}
    if isinstance(body, dict) and "detail" in body:
        body = body["detail"]
    if isinstance(body, dict):
        return str(body.get("error") or ""), str(body.get("message") or "")
    if isinstance(body, str):
        return body, body
    return "", ""


class BookingApi:
    """Async REST client for the booking backend.

    Every call raises NetworkError on transport failure and ApiError on a
    non-2xx answer or a `success: false` body.
    """

    def __init__(self, base_url: str = RINGSIDE_API_URL,
                 client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.http = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout,
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def request(self, method: str, path: str,
                      **kw: Any) -> Dict[str, Any]:
        try:
            r = await self.http.request(method, path, **kw)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path}: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = r.text

        if r.status_code >= 400:
            error, msg = _error_fields(body)
            raise ApiError(r.status_code, error, msg)
        if isinstance(body, dict) and body.get("success") is False:
            error, msg = _error_fields(body)
            raise ApiError(r.status_code, error, msg)
        if not isinstance(body, dict):
            raise ApiError(r.status_code, "Invalid response")
        return body

    # ---- catalog
    async def health(self) -> Dict[str, Any]:
        return await self.request("GET", f"{API_PREFIX}/health")

    async def get_stadiums(self) -> List[Dict[str, Any]]:
        body = await self.request("GET", f"{API_PREFIX}/stadiums")
        return body.get("stadiums") or []

    async def get_ticket_config(self, stadium_id: str) -> TicketConfig:
        body = await self.request(
            "GET", f"{API_PREFIX}/stadiums/{stadium_id}/tickets")
        return TicketConfig.from_api(body)

    async def get_available_tickets(self, stadium_id: str,
                                    date: str) -> TicketConfig:
        body = await self.request(
            "GET", f"{API_PREFIX}/tickets/available",
            params={"stadiumId": stadium_id, "date": date},
        )
        return TicketConfig.from_api(body)

    async def check_availability(self, stadium_id: str, date: str) -> bool:
        body = await self.request(
            "GET", f"{API_PREFIX}/tickets/check-availability",
            params={"stadiumId": stadium_id, "date": date},
        )
        return bool(body.get("isAvailable"))

    # ---- e-mail verification
    async def init_booking(self, booking: BookingData) -> str:
        body = await self.request(
            "POST", f"{API_PREFIX}/bookings/init", json=booking.to_payload())
        return body.get("verificationId", "")

    async def verify_email(self, token: str,
                           email: Optional[str] = None) -> BookingData:
        payload = {"token": token}
        if email:
            payload["email"] = email
        body = await self.request(
            "POST", f"{API_PREFIX}/verify-email", json=payload)
        return BookingData.from_payload(body["bookingData"])

    # ---- payments
    async def create_payment(self, booking: BookingData) -> PaymentSession:
        body = await self.request(
            "POST", f"{API_PREFIX}/payments/create", json=booking.to_payload())
        return PaymentSession.from_api(body["data"])

    async def create_card_checkout(self,
                                   booking: BookingData) -> Dict[str, Any]:
        body = await self.request(
            "POST", f"{API_PREFIX}/payments/create-stripe-checkout",
            json=booking.to_payload(),
        )
        return body["data"]

    async def refresh_payment(self, reference_no: str) -> PaymentSession:
        body = await self.request(
            "POST", f"{API_PREFIX}/payments/{reference_no}/refresh")
        return PaymentSession.from_api(body["data"])

    async def get_payment(self, reference_no: str) -> PaymentSession:
        body = await self.request(
            "GET", f"{API_PREFIX}/payments/reference/{reference_no}")
        session = PaymentSession.from_api(body["data"])
        session.status = body.get("status") or session.status
        return session

    # ---- demo gateway and outbox
    async def latest_mail_token(self, email: str) -> Optional[str]:
        try:
            body = await self.request(
                "GET", "/mockmail/latest", params={"email": email})
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise
        return body.get("token")

    async def emit_mock_event(self, reference_no: str, kind: str) -> int:
        try:
            r = await self.http.post(f"/mockpay/{reference_no}/emit",
                                     data={"t": kind})
        except httpx.HTTPError as e:
            raise NetworkError(f"emit {reference_no}: {e}") from e
        if r.status_code >= 400:
            raise ApiError(r.status_code, "emit failed", r.text)
        return r.status_code
