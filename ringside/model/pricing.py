from typing import Any, Mapping, Optional, Tuple

from ..zones import ZONE_PRICES, message

MAX_TICKETS_PER_BOOKING = 15
PRODUCT_DETAIL_MAX = 1024

TICKET_TYPES = ("regular", "special")


def split_selection_key(key: str) -> Tuple[Optional[str], str]:
    """"regular-<id>" -> ("regular", "<id>"); a key without a dash is a zone.

    Only the first dash separates, ticket ids may contain dashes themselves.
    """
    if "-" not in key:
        return None, key
    ticket_type, ticket_id = key.split("-", 1)
    return ticket_type, ticket_id


def selection_key(ticket_type: str, ticket_id: str) -> str:
    return f"{ticket_type}-{ticket_id}"


def _discount_price(ticket: Mapping[str, Any]) -> Optional[int]:
    for k in ("discountPrice", "discount_price"):
        v = ticket.get(k)
        if v:
            return int(v)
    info = ticket.get("discountInfo") or {}
    if info.get("hasDiscount") and info.get("discountPrice"):
        return int(info["discountPrice"])
    return None


def unit_price(ticket: Optional[Mapping[str, Any]]) -> int:
    # discount wins over list price
    if not ticket:
        return 0
    discounted = _discount_price(ticket)
    if discounted is not None:
        return discounted
    return int(ticket.get("price") or 0)


def zone_price(zone_id: str) -> int:
    return ZONE_PRICES.get(zone_id, 0)


def total_price(price: int, quantity: int) -> int:
    if price <= 0 or quantity <= 0:
        return 0
    return price * quantity


def max_quantity(remaining: Optional[int]) -> int:
    if remaining is None:
        return MAX_TICKETS_PER_BOOKING
    return max(0, min(MAX_TICKETS_PER_BOOKING, remaining))


def quantity_error(quantity: int, remaining: Optional[int],
                   language: str = "en") -> Optional[str]:
    """Localized reason why `quantity` can't be booked, None when it can."""
    if quantity < 1:
        return message("min_tickets", language)
    if quantity > MAX_TICKETS_PER_BOOKING:
        return message("max_tickets", language, max=MAX_TICKETS_PER_BOOKING)
    if remaining is not None and quantity > remaining:
        return message("only_available", language, available=remaining)
    return None


def product_detail(stadium: str, date: str, ticket: str, qty: int) -> str:
    detail = f"Stadium: {stadium} | Date: {date} | Ticket: {ticket} | Qty: {qty}"
    return detail[:PRODUCT_DETAIL_MAX]
