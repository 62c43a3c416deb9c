from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..helpers import from_iso


class Step(str, Enum):
    STADIUM = "stadium"
    DATE = "date"
    PAYMENT = "payment"
    EMAIL_VERIFICATION = "email_verification"
    SUCCESS = "success"


class VerificationState(str, Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    VERIFIED = "verified"


class Dialog(str, Enum):
    CANCEL_CONFIRM = "cancel_confirm"
    EXPIRED = "expired"
    REFRESH_LIMIT = "refresh_limit"
    SOLD_OUT = "sold_out"
    EMAIL_WARNING = "email_warning"
    REFUND_DISCLAIMER = "refund_disclaimer"


# payment statuses as the backend reports them
PENDING = "pending"
PAID = "paid"
COMPLETED = "completed"
FAILED = "failed"
EXPIRED = "expired"
CANCELLED = "cancelled"

SUCCESS_STATUSES = frozenset({PAID, COMPLETED})
TERMINAL_FAILURE_STATUSES = frozenset({FAILED, EXPIRED, CANCELLED})


@dataclass
class BookingSelection:
    stadium_id: Optional[str] = None
    date: Optional[str] = None
    zone_or_ticket_id: Optional[str] = None
    # regular | special | zone
    ticket_type: Optional[str] = None
    quantity: int = 1

    def clear_ticket(self) -> None:
        self.zone_or_ticket_id = None
        self.ticket_type = None
        self.quantity = 1

    @property
    def complete(self) -> bool:
        return bool(self.stadium_id and self.date and self.zone_or_ticket_id)


@dataclass
class TicketInfo:
    id: str
    name: str
    price: int
    kind: str = "regular"
    discount_price: Optional[int] = None
    remaining_quantity: int = 0
    days: List[int] = field(default_factory=list)
    date: Optional[str] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any], kind: str) -> "TicketInfo":
        discount = d.get("discountPrice")
        info = d.get("discountInfo") or {}
        if discount is None and info.get("hasDiscount"):
            discount = info.get("discountPrice")
        remaining = d.get("availableQuantity", d.get("quantity", 0))
        return cls(
            id=str(d["id"]),
            name=d.get("name", ""),
            price=int(d.get("price") or 0),
            kind=kind,
            discount_price=int(discount) if discount else None,
            remaining_quantity=int(remaining or 0),
            days=list(d.get("days") or []),
            date=d.get("date"),
        )

    @property
    def unit_price(self) -> int:
        return self.discount_price or self.price

    def to_api(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "quantity": self.remaining_quantity,
            "availableQuantity": self.remaining_quantity,
        }
        if self.discount_price:
            out["discountPrice"] = self.discount_price
        if self.kind == "regular":
            out["days"] = self.days
        else:
            out["date"] = self.date
        return out


@dataclass
class TicketConfig:
    regular_tickets: List[TicketInfo] = field(default_factory=list)
    special_tickets: List[TicketInfo] = field(default_factory=list)

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "TicketConfig":
        return cls(
            regular_tickets=[TicketInfo.from_api(t, "regular")
                             for t in d.get("regularTickets") or []],
            special_tickets=[TicketInfo.from_api(t, "special")
                             for t in d.get("specialTickets") or []],
        )

    @property
    def empty(self) -> bool:
        return not self.regular_tickets and not self.special_tickets

    def find(self, ticket_type: str, ticket_id: str) -> Optional[TicketInfo]:
        pool = (self.regular_tickets if ticket_type == "regular"
                else self.special_tickets)
        for t in pool:
            if t.id == ticket_id:
                return t
        return None


@dataclass(frozen=True)
class BookingData:
    """Snapshot handed from ticket selection to verification and payment."""
    stadium: str
    date: str
    zone: str
    quantity: int
    total_price: int
    date_display: str
    name: str
    email: str
    phone: str
    ticket_id: Optional[str] = None
    ticket_type: Optional[str] = None
    stadium_data: Optional[Dict[str, Any]] = None
    ticket_data: Optional[Dict[str, Any]] = None
    zone_data: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        out = {
            "stadium": self.stadium,
            "date": self.date,
            "zone": self.zone,
            "quantity": self.quantity,
            "totalPrice": self.total_price,
            "dateDisplay": self.date_display,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
        }
        if self.ticket_id:
            out["ticketId"] = self.ticket_id
            out["ticketType"] = self.ticket_type
        if self.stadium_data is not None:
            out["stadiumData"] = self.stadium_data
        if self.ticket_data is not None:
            out["ticketData"] = self.ticket_data
        if self.zone_data is not None:
            out["zoneData"] = self.zone_data
        return out

    @classmethod
    def from_payload(cls, d: Dict[str, Any]) -> "BookingData":
        return cls(
            stadium=d["stadium"],
            date=d["date"],
            zone=d.get("zone") or "",
            quantity=int(d.get("quantity") or 1),
            total_price=int(d.get("totalPrice") or 0),
            date_display=d.get("dateDisplay") or d["date"],
            name=d.get("name") or "",
            email=d.get("email") or "",
            phone=d.get("phone") or "",
            ticket_id=d.get("ticketId"),
            ticket_type=d.get("ticketType"),
            stadium_data=d.get("stadiumData"),
            ticket_data=d.get("ticketData"),
            zone_data=d.get("zoneData"),
        )


@dataclass
class PaymentSession:
    id: int
    reference_no: str
    order_no: str
    expire_at: Optional[float]
    status: str = PENDING
    amount: int = 0
    qr_code: Optional[str] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "PaymentSession":
        # accepts the create/refresh envelope and the bare payment record
        payment = d.get("payment") or d
        return cls(
            id=int(payment.get("id") or 0),
            reference_no=d.get("referenceNo") or payment["referenceNo"],
            order_no=d.get("orderNo") or payment.get("orderNo") or "",
            expire_at=from_iso(d.get("expireDate")
                               or payment.get("expireDate")),
            status=payment.get("status") or PENDING,
            amount=int(payment.get("amount") or 0),
            qr_code=d.get("qrCode") or payment.get("qrCode"),
        )

    @property
    def succeeded(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_FAILURE_STATUSES
