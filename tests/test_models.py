import pytest

from ringside.client.session_context import (
    EMAIL_VERIFIED_MESSAGE, LocalChannel, SessionContext,
)
from ringside.helpers import from_iso
from ringside.model.booking import (
    BookingData, BookingSelection, PaymentSession, TicketConfig,
)


class TestTicketConfig:
    def test_from_api(self):
        cfg = TicketConfig.from_api({
            "regularTickets": [
                {"id": "club", "name": "Club Class", "price": 2000,
                 "discountPrice": 1800, "availableQuantity": 80,
                 "days": [1, 3, 4, 0]},
            ],
            "specialTickets": [
                {"id": "gala", "name": "Gala Night", "price": 3500,
                 "quantity": 50, "date": "2025-12-05",
                 "discountInfo": {"hasDiscount": True,
                                  "discountPrice": 3000}},
            ],
        })
        club = cfg.find("regular", "club")
        gala = cfg.find("special", "gala")
        assert club.unit_price == 1800
        assert club.remaining_quantity == 80
        assert club.days == [1, 3, 4, 0]
        assert gala.kind == "special"
        assert gala.unit_price == 3000
        assert gala.remaining_quantity == 50
        assert gala.date == "2025-12-05"
        assert cfg.find("regular", "gala") is None
        assert not cfg.empty

    def test_empty(self):
        assert TicketConfig.from_api({}).empty


class TestBookingData:
    def test_payload_uses_protocol_keys(self, booking):
        p = booking.to_payload()
        assert p["totalPrice"] == 4500
        assert p["dateDisplay"] == "Friday, November 28, 2025"
        assert p["ticketId"] == "A"
        assert p["ticketType"] == "regular"
        assert p["stadiumData"]["name"] == "Lumpinee Stadium"
        assert "zoneData" not in p
        assert BookingData.from_payload(p) == booking

    def test_zone_booking_has_no_ticket_keys(self):
        b = BookingData(stadium="bangla", date="2025-11-28", zone="vip",
                        quantity=2, total_price=5000,
                        date_display="Friday, November 28, 2025",
                        name="A", email="a@example.com", phone="1")
        assert "ticketId" not in b.to_payload()

    def test_frozen(self, booking):
        with pytest.raises(AttributeError):
            booking.quantity = 4


def test_selection_complete_and_clear():
    sel = BookingSelection(stadium_id="lumpinee", date="2025-11-28",
                           zone_or_ticket_id="A", ticket_type="regular",
                           quantity=4)
    assert sel.complete
    sel.clear_ticket()
    assert not sel.complete
    assert sel.quantity == 1
    assert sel.ticket_type is None


class TestPaymentSession:
    def test_from_envelope(self):
        s = PaymentSession.from_api({
            "payment": {"id": 12, "referenceNo": "123456789012",
                        "orderNo": "000012", "status": "pending",
                        "amount": 4500},
            "qrCode": "mockpay://promptpay?ref=123456789012",
            "expireDate": "2025-11-20T05:10:00+00:00",
            "orderNo": "000012",
            "referenceNo": "123456789012",
        })
        assert s.id == 12
        assert s.reference_no == "123456789012"
        assert s.qr_code.startswith("mockpay://")
        assert s.expire_at == from_iso("2025-11-20T05:10:00+00:00")
        assert not s.succeeded and not s.terminal

    def test_from_bare_record(self):
        s = PaymentSession.from_api({
            "id": 12, "referenceNo": "123456789012", "orderNo": "000012",
            "status": "completed", "amount": 4500, "expireDate": None,
        })
        assert s.succeeded
        assert s.expire_at is None

    @pytest.mark.parametrize("status", ["failed", "expired", "cancelled"])
    def test_terminal(self, status):
        s = PaymentSession(id=1, reference_no="1", order_no="000001",
                           expire_at=None, status=status)
        assert s.terminal and not s.succeeded


class TestSessionContext:
    def test_verified_booking_round_trips_through_storage(self, booking):
        ctx = SessionContext()
        ctx.verified_booking_data = booking
        assert isinstance(ctx.session["verifiedBookingData"], str)
        assert ctx.verified_booking_data == booking
        ctx.verified_booking_data = None
        assert "verifiedBookingData" not in ctx.session

    def test_flags(self):
        ctx = SessionContext()
        assert not ctx.email_verified
        ctx.email_verified = True
        assert ctx.session["emailVerified"] == "true"
        ctx.success_page_data = {"referenceNo": "1"}
        ctx.clear_booking()
        assert ctx.session == {}

    def test_language_is_restricted(self):
        ctx = SessionContext(language="th")
        assert ctx.language == "th"
        ctx.language = "fr"
        assert ctx.language == "en"

    @pytest.mark.asyncio
    async def test_channel_reaches_every_context(self):
        channel = LocalChannel()
        a = SessionContext(channel=channel)
        b = SessionContext(channel=channel)
        seen = []
        unsubscribe = b.subscribe(seen.append)

        async def async_listener(msg):
            seen.append(("async", msg["type"]))
        b.subscribe(async_listener)

        await a.publish_email_verified()
        assert seen == [EMAIL_VERIFIED_MESSAGE, ("async", "email_verified")]

        unsubscribe()
        await a.publish_email_verified()
        assert seen.count(EMAIL_VERIFIED_MESSAGE) == 1
