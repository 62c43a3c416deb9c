from unittest.mock import AsyncMock

import pytest

from ringside.client.api import BookingApi
from ringside.client.booking_flow import BookingFlowController
from ringside.client.session_context import LocalChannel, SessionContext
from ringside.errors import (
    ApiError, BookingValidationError, NetworkError, TicketSoldOut,
)
from ringside.model.booking import Step, TicketConfig, VerificationState

LUMPINEE = {"id": "lumpinee", "name": "Lumpinee Stadium",
            "location": "Bangkok"}


@pytest.fixture
def api(lumpinee_config):
    api = AsyncMock(spec=BookingApi)
    api.get_stadiums.return_value = [LUMPINEE]
    api.get_ticket_config.return_value = lumpinee_config
    api.get_available_tickets.return_value = lumpinee_config
    api.init_booking.return_value = "a1b2c3"
    return api


@pytest.fixture
def flow(api, context, clock):
    f = BookingFlowController(api, context, clock=clock)
    yield f
    f.close()


async def choose_ticket(flow, quantity=3):
    await flow.load_stadiums()
    await flow.select_stadium("lumpinee")
    await flow.select_date("2025-11-28")
    flow.select_ticket("regular-A")
    flow.set_quantity(quantity)
    flow.set_customer("Somchai Jaidee", "somchai@example.com", "0812345678")


class TestSelection:
    @pytest.mark.asyncio
    async def test_ringside_a_three_tickets(self, flow):
        await choose_ticket(flow)

        assert flow.step == Step.PAYMENT
        assert flow.unit_price == 1500
        assert flow.total_price == 4500

    @pytest.mark.asyncio
    async def test_quantity_over_limit_is_rejected(self, flow):
        await choose_ticket(flow)

        with pytest.raises(BookingValidationError,
                           match="Maximum 15 tickets allowed") as ei:
            flow.set_quantity(20)
        assert ei.value.field == "quantity"
        assert flow.selection.quantity == 3
        assert flow.total_price == 4500

    @pytest.mark.asyncio
    async def test_quantity_bounded_by_stock(self, flow, api,
                                             lumpinee_config):
        lumpinee_config.regular_tickets[0].remaining_quantity = 4
        await choose_ticket(flow, quantity=2)

        assert flow.max_quantity == 4
        with pytest.raises(BookingValidationError,
                           match="Only 4 tickets available"):
            flow.set_quantity(5)

    @pytest.mark.asyncio
    async def test_select_stadium_clears_downstream(self, flow):
        await choose_ticket(flow)
        await flow.select_stadium("lumpinee")

        assert flow.step == Step.DATE
        assert flow.selection.date is None
        assert flow.selection.zone_or_ticket_id is None

    @pytest.mark.asyncio
    async def test_changing_ticket_resets_quantity(self, flow):
        await choose_ticket(flow, quantity=5)
        flow.select_ticket("regular-A")
        assert flow.selection.quantity == 5
        flow.select_ticket("regular-B")
        assert flow.selection.quantity == 1
        assert flow.total_price == 1000

    @pytest.mark.asyncio
    async def test_special_dates_are_volatile(self, flow, api):
        cfg = TicketConfig.from_api({"specialTickets": [
            {"id": "gala", "name": "Gala Night", "price": 3500,
             "quantity": 50, "date": "2025-12-05"}]})
        api.get_ticket_config.return_value = cfg
        api.check_availability.side_effect = [True, False]

        await flow.select_stadium("lumpinee")
        assert await flow.availability.check("lumpinee", "2025-12-05")
        assert not await flow.availability.check("lumpinee", "2025-12-05")

    @pytest.mark.asyncio
    async def test_bad_dates(self, flow, clock):
        await flow.select_stadium("lumpinee")

        with pytest.raises(BookingValidationError,
                           match="Please choose a valid date"):
            await flow.select_date("2025-02-30")
        with pytest.raises(BookingValidationError, match="no longer on sale"):
            await flow.select_date("2025-11-19")
        # 20:45 on fight day
        clock.advance(8 * 3600 + 45 * 60)
        with pytest.raises(BookingValidationError, match="no longer on sale"):
            await flow.select_date("2025-11-20")
        assert flow.step == Step.DATE

    @pytest.mark.asyncio
    async def test_unavailable_ticket(self, flow):
        await flow.select_stadium("lumpinee")
        await flow.select_date("2025-11-28")

        with pytest.raises(TicketSoldOut):
            flow.select_ticket("regular-Z")
        with pytest.raises(BookingValidationError):
            flow.select_ticket("vvip-A")

    @pytest.mark.asyncio
    async def test_available_tickets_failure_is_surfaced(self, flow, api):
        api.get_available_tickets.side_effect = NetworkError("offline")
        await flow.select_stadium("lumpinee")
        await flow.select_date("2025-11-28")

        assert flow.available is None
        assert "offline" in flow.error

    @pytest.mark.asyncio
    async def test_legacy_zones(self, flow, api):
        api.get_ticket_config.return_value = TicketConfig()
        api.get_available_tickets.return_value = TicketConfig()
        await flow.select_stadium("lumpinee")
        await flow.select_date("2025-11-28")

        assert flow.uses_legacy_zones
        assert [z["id"] for z in flow.zones()] == ["vip", "club", "standard"]
        flow.select_ticket("vip")
        flow.set_quantity(2)
        assert flow.selection.ticket_type == "zone"
        assert flow.total_price == 5000


class TestVerification:
    @pytest.mark.asyncio
    async def test_proceed_is_optimistic(self, flow, api):
        await choose_ticket(flow)
        seen = {}

        async def init_booking(booking):
            seen["step"] = flow.step
            seen["state"] = flow.verification_state
            return "a1b2c3"
        api.init_booking.side_effect = init_booking

        booking = await flow.proceed_to_payment()

        assert seen == {"step": Step.EMAIL_VERIFICATION,
                        "state": VerificationState.PENDING_CONFIRMATION}
        assert flow.verification_state == VerificationState.CONFIRMED
        assert flow.verification_id == "a1b2c3"
        assert booking.total_price == 4500
        assert booking.zone == "regular-A"
        assert booking.ticket_id == "A"
        assert booking.ticket_type == "regular"
        assert booking.date_display == "Friday, November 28, 2025"
        assert booking.stadium_data == LUMPINEE

    @pytest.mark.asyncio
    async def test_mail_failure_keeps_step(self, flow, api):
        await choose_ticket(flow)
        api.init_booking.side_effect = NetworkError("smtp down")

        await flow.proceed_to_payment()
        assert flow.step == Step.EMAIL_VERIFICATION
        assert flow.verification_state == VerificationState.FAILED
        assert flow.error == ("Failed to send verification email. "
                              "Please try again.")

        api.init_booking.side_effect = None
        assert await flow.resend_verification() == \
            VerificationState.CONFIRMED
        assert flow.error is None

    @pytest.mark.asyncio
    async def test_rate_limit_message_is_shown(self, flow, api):
        await choose_ticket(flow)
        api.init_booking.side_effect = ApiError(
            429, "Too many requests",
            "Too many verification requests. Please try again later.")

        await flow.proceed_to_payment()
        assert flow.verification_state == VerificationState.FAILED
        assert flow.error.startswith("Too many verification requests")

    @pytest.mark.asyncio
    async def test_missing_fields_change_nothing(self, flow, api):
        await choose_ticket(flow)
        flow.set_customer("Somchai", "", "0812345678")

        with pytest.raises(BookingValidationError,
                           match="Please fill in all fields"):
            await flow.proceed_to_payment()
        flow.set_customer("Somchai", "somchai-at-example", "0812345678")
        with pytest.raises(BookingValidationError,
                           match="valid email"):
            await flow.proceed_to_payment()

        assert flow.step == Step.PAYMENT
        assert flow.pending_booking is None
        api.init_booking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_incomplete_selection(self, flow):
        await flow.select_stadium("lumpinee")
        with pytest.raises(BookingValidationError,
                           match="select stadium, date, and zone"):
            await flow.proceed_to_payment()

    @pytest.mark.asyncio
    async def test_verify_then_resume(self, flow, api, context):
        await choose_ticket(flow)
        booking = await flow.proceed_to_payment()
        api.verify_email.return_value = booking

        await flow.verify_email("token")
        assert context.email_verified
        # the waiting tab heard the broadcast and went home
        assert flow.step == Step.STADIUM

        assert flow.resume_verified()
        assert flow.step == Step.PAYMENT
        assert flow.payment_data == booking
        assert flow.verification_state == VerificationState.VERIFIED
        assert flow.selection.zone_or_ticket_id == "A"
        assert context.verified_booking_data is None
        assert context.email_verified

    @pytest.mark.asyncio
    async def test_other_tab_resets_outside_payment(self, api, clock,
                                                    booking):
        channel = LocalChannel()
        here = BookingFlowController(api, SessionContext(channel), clock=clock)
        there = BookingFlowController(api, SessionContext(channel),
                                      clock=clock)
        paying = BookingFlowController(api, SessionContext(channel),
                                       clock=clock)
        await choose_ticket(there)
        paying.context.verified_booking_data = booking
        paying.resume_verified()
        api.verify_email.return_value = booking

        await here.verify_email("token")

        assert there.step == Step.STADIUM
        assert there.selection.stadium_id is None
        assert paying.step == Step.PAYMENT
        for f in (here, there, paying):
            f.close()

    def test_resume_without_snapshot(self, flow):
        assert not flow.resume_verified()
        assert flow.step == Step.STADIUM


class TestNavigation:
    @pytest.mark.asyncio
    async def test_back_walks_the_steps(self, flow, booking):
        await choose_ticket(flow)
        await flow.proceed_to_payment()

        assert flow.back() == Step.PAYMENT
        assert flow.payment_data is None
        assert flow.selection.zone_or_ticket_id == "A"
        assert flow.back() == Step.DATE
        assert flow.selection.zone_or_ticket_id is None
        assert flow.selection.stadium_id == "lumpinee"
        assert flow.back() == Step.STADIUM
        assert flow.selection.stadium_id is None

    def test_back_from_checkout_keeps_ticket(self, flow, context,
                                                   booking):
        context.verified_booking_data = booking
        flow.resume_verified()

        assert flow.back() == Step.PAYMENT
        assert flow.payment_data is None
        assert flow.selection.zone_or_ticket_id == "A"

    @pytest.mark.asyncio
    async def test_url_round_trip(self, flow, api, clock):
        await choose_ticket(flow)
        params = flow.to_url_params()
        assert params == {"stadium": "lumpinee", "date": "2025-11-28",
                          "step": "payment"}

        other = BookingFlowController(api, SessionContext(), clock=clock)
        assert other.apply_url_params(params) == Step.PAYMENT
        await other.reload()
        assert other.selection.date == "2025-11-28"
        assert other.available is not None
        other.close()

    def test_empty_url_resets(self, flow):
        flow.selection.stadium_id = "lumpinee"
        assert flow.apply_url_params({}) == Step.STADIUM
        assert flow.selection.stadium_id is None

    @pytest.mark.asyncio
    async def test_date_step_clears_ticket(self, flow):
        await choose_ticket(flow)
        step = flow.apply_url_params({"stadium": "lumpinee",
                                      "date": "2025-11-28", "step": "date"})
        assert step == Step.DATE
        assert flow.selection.zone_or_ticket_id is None

    def test_unknown_step_falls_back_to_date(self, flow):
        assert flow.apply_url_params({"stadium": "lumpinee",
                                      "step": "checkout"}) == Step.DATE

    @pytest.mark.asyncio
    async def test_complete_and_reset(self, flow, context):
        await choose_ticket(flow)
        flow.complete({"referenceNo": "123456789012"})
        assert flow.step == Step.SUCCESS
        assert context.success_page_data == {"referenceNo": "123456789012"}

        assert flow.back() == Step.STADIUM
        assert flow.customer["email"] == ""

    def test_payment_controller_needs_verified_booking(self, flow, context,
                                                       booking):
        with pytest.raises(BookingValidationError):
            flow.payment_controller()
        context.verified_booking_data = booking
        flow.resume_verified()
        pay = flow.payment_controller(auto_start=False)
        assert pay.booking == booking
        assert pay.on_success == flow.complete
