from .orm import (
    Base, EmailVerification, Order, Stadium, Ticket, TicketDateStock,
)

__all__ = [
    "Base", "EmailVerification", "Order", "Stadium", "Ticket",
    "TicketDateStock",
]
