from .api import BookingApi, RINGSIDE_API_URL
from .availability import AvailabilityCache, TicketConfigCache
from .booking_flow import BookingFlowController
from .payment_session import PaymentSessionController
from .session_context import (
    LocalChannel, RedisChannel, SessionContext, VerificationChannel,
)

__all__ = [
    "AvailabilityCache", "BookingApi", "BookingFlowController",
    "LocalChannel", "PaymentSessionController", "RINGSIDE_API_URL",
    "RedisChannel", "SessionContext", "TicketConfigCache",
    "VerificationChannel",
]
