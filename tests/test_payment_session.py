import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import pytest

from ringside.client.api import BookingApi
from ringside.client.payment_session import (
    MAX_COUNTDOWN, SUCCESS_REDIRECT_DELAY, PaymentSessionController,
)
from ringside.errors import (
    ApiError, BookingValidationError, EmailNotVerified, NetworkError,
    RefreshLimitExceeded, SessionTerminated,
)
from ringside.model.booking import Dialog, PaymentSession, TicketConfig

from conftest import T0

REF = "123456789012"


def make_session(ref=REF, id=7, expire_at=T0 + 600, status="pending"):
    return PaymentSession(id=id, reference_no=ref, order_no=f"{id:06d}",
                          expire_at=expire_at, status=status, amount=4500,
                          qr_code=f"mockpay://promptpay?ref={ref}")


@pytest.fixture
def api(lumpinee_config):
    api = AsyncMock(spec=BookingApi)
    api.get_available_tickets.return_value = lumpinee_config
    api.create_payment.return_value = make_session()
    api.get_payment.return_value = make_session()
    return api


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def callbacks():
    return {"on_back": Mock(), "on_calendar": Mock(), "on_home": Mock(),
            "on_success": Mock()}


@pytest.fixture
def make_pay(api, context, booking, clock, sleeps, callbacks):
    async def sleep(seconds):
        sleeps.append(seconds)
        await asyncio.sleep(0)

    default_booking = booking

    def make(verified=True, auto_start=False, booking=None):
        context.email_verified = verified
        return PaymentSessionController(
            api, context, booking or default_booking, clock=clock,
            sleep=sleep, auto_start=auto_start, **callbacks)
    return make


@pytest.fixture
def pay(make_pay):
    return make_pay()


async def open_qr(pay):
    assert await pay.request_payment("qr") == Dialog.REFUND_DISCLAIMER
    session = await pay.confirm_disclaimer()
    assert session is not None
    return session


class TestBeforePayment:
    @pytest.mark.asyncio
    async def test_unverified_email_warns_first(self, make_pay, api,
                                                context):
        pay = make_pay(verified=False)

        assert await pay.request_payment("qr") == Dialog.EMAIL_WARNING
        api.get_available_tickets.assert_not_awaited()

        assert await pay.confirm_email_warning() == Dialog.REFUND_DISCLAIMER
        assert context.email_verified

    @pytest.mark.asyncio
    async def test_cancel_email_warning_goes_back(self, make_pay, callbacks):
        pay = make_pay(verified=False)
        await pay.request_payment("card")
        await pay.cancel_email_warning()

        assert pay.dialog is None
        callbacks["on_back"].assert_called_once_with()

    @pytest.mark.asyncio
    async def test_sold_out_since_selection(self, pay, lumpinee_config):
        lumpinee_config.regular_tickets[0].remaining_quantity = 2

        assert await pay.request_payment("qr") == Dialog.SOLD_OUT

    @pytest.mark.asyncio
    async def test_availability_network_error_is_not_sold_out(self, pay,
                                                              api):
        api.get_available_tickets.side_effect = NetworkError("offline")

        with pytest.raises(NetworkError):
            await pay.request_payment("qr")
        assert pay.dialog is None
        assert pay.error == "offline"

    @pytest.mark.asyncio
    async def test_missing_contact(self, make_pay, booking):
        pay = make_pay(booking=replace(booking, phone=""))

        with pytest.raises(BookingValidationError,
                           match="Please fill in all fields"):
            await pay.request_payment("qr")

    @pytest.mark.asyncio
    async def test_unknown_method(self, pay):
        with pytest.raises(BookingValidationError):
            await pay.request_payment("cash")

    @pytest.mark.asyncio
    async def test_legacy_zone_needs_an_open_night(self, make_pay, booking,
                                                   api):
        zone_booking = replace(booking, zone="vip", ticket_id=None,
                               ticket_type=None)
        pay = make_pay(booking=zone_booking)
        assert await pay.request_payment("qr") == Dialog.REFUND_DISCLAIMER

        api.get_available_tickets.return_value = TicketConfig()
        assert await pay.request_payment("qr") == Dialog.SOLD_OUT

    @pytest.mark.asyncio
    async def test_disclaimer_requires_verified_email(self, make_pay, api):
        pay = make_pay(verified=False)

        with pytest.raises(EmailNotVerified):
            await pay.confirm_disclaimer()
        assert pay.dialog == Dialog.EMAIL_WARNING
        api.create_payment.assert_not_awaited()


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_qr_session(self, pay):
        session = await open_qr(pay)

        assert session.reference_no == REF
        assert pay.status == "pending"
        assert pay.time_left == 600
        assert pay.refresh_count == 0
        assert pay.dialog is None

    @pytest.mark.asyncio
    async def test_countdown_is_clamped_and_only_goes_down(self, pay, api,
                                                           clock):
        api.create_payment.return_value = make_session(expire_at=T0 + 900)
        await open_qr(pay)
        assert pay.time_left == MAX_COUNTDOWN

        clock.advance(400)
        assert await pay.tick() == 500
        clock.advance(-120)
        assert await pay.tick() == 500
        clock.advance(130)
        assert await pay.tick() == 490

    @pytest.mark.asyncio
    async def test_create_failure_sets_banner(self, pay, api):
        api.create_payment.side_effect = ApiError(409, "Sold out")
        await pay.request_payment("qr")

        assert await pay.confirm_disclaimer() is None
        assert pay.error == "Failed to generate QR code"
        assert pay.session is None

    @pytest.mark.asyncio
    async def test_card_checkout_stores_success_snapshot(self, pay, api,
                                                         context):
        api.create_card_checkout.return_value = {
            "url": f"/mockpay/{REF}", "sessionId": REF, "referenceNo": REF,
            "orderNo": "000007",
        }
        await pay.request_payment("card")

        assert await pay.confirm_disclaimer() == f"/mockpay/{REF}"
        snap = context.success_page_data
        assert snap["referenceNo"] == REF
        assert snap["paymentMethod"] == "card"
        assert snap["amount"] == 4500
        assert snap["bookingData"]["ticketId"] == "A"
        api.create_payment.assert_not_awaited()


class TestPolling:
    @pytest.mark.asyncio
    async def test_paid_at_minute_three(self, make_pay, api, clock, context,
                                        sleeps, callbacks):
        calls = []

        async def get_payment(ref):
            calls.append(ref)
            status = "paid" if len(calls) >= 3 else "pending"
            return make_session(status=status)
        api.get_payment.side_effect = get_payment
        clock.advance(180)
        pay = make_pay(auto_start=True)

        await open_qr(pay)
        for _ in range(200):
            if pay.redirected:
                break
            await asyncio.sleep(0)

        assert pay.status == "paid"
        assert pay.redirected
        assert not pay.polling and not pay.counting
        assert pay.time_left == 420
        assert len(calls) == 3
        assert SUCCESS_REDIRECT_DELAY in sleeps
        assert pay.redirect_url == f"/success?ref={REF}"
        assert pay.success_data["orderNo"] == "000007"
        assert context.success_page_data == pay.success_data
        callbacks["on_success"].assert_called_once_with(pay.success_data)
        await pay.close()

    @pytest.mark.asyncio
    async def test_expiry_reconciles_once(self, pay, api, clock):
        await open_qr(pay)
        clock.advance(600)

        assert await pay.tick() == 0
        assert pay.status == "expired"
        assert pay.dialog == Dialog.EXPIRED
        assert api.get_payment.await_count == 1
        await pay.tick()
        assert api.get_payment.await_count == 1

    @pytest.mark.asyncio
    async def test_expiry_race_server_says_paid(self, pay, api, clock,
                                                callbacks):
        await open_qr(pay)
        api.get_payment.return_value = make_session(status="paid")
        clock.advance(601)

        await pay.tick()
        await pay.redirect_task
        assert pay.status == "paid"
        assert pay.dialog is None
        callbacks["on_success"].assert_called_once()

    @pytest.mark.asyncio
    async def test_expiry_with_server_unreachable(self, pay, api, clock):
        await open_qr(pay)
        api.get_payment.side_effect = NetworkError("offline")
        clock.advance(600)

        await pay.tick()
        assert pay.status == "expired"
        assert pay.dialog == Dialog.EXPIRED

    @pytest.mark.asyncio
    async def test_backoff_then_stalled(self, pay, api):
        await open_qr(pay)
        api.get_payment.side_effect = NetworkError("offline")

        assert pay.next_poll_delay() == 2.0
        delays = []
        for _ in range(5):
            await pay.poll_once()
            delays.append(pay.next_poll_delay())
        assert delays[:4] == [4.0, 8.0, 16.0, 30.0]
        assert pay.stalled
        assert not pay.polling
        assert pay.error.startswith("We can't reach the payment service")
        assert pay.status == "pending"

        pay.resume_polling()
        assert not pay.stalled
        assert pay.poll_failures == 0
        assert pay.error is None

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, pay, api):
        await open_qr(pay)
        api.get_payment.side_effect = [NetworkError("offline"),
                                       make_session()]
        await pay.poll_once()
        assert pay.poll_failures == 1
        await pay.poll_once()
        assert pay.poll_failures == 0

    @pytest.mark.asyncio
    async def test_declined_payment(self, pay, api):
        await open_qr(pay)
        api.get_payment.return_value = make_session(status="failed")

        assert await pay.poll_once() == "failed"
        assert pay.error == ("The payment was not completed. "
                             "Please start over.")
        with pytest.raises(SessionTerminated):
            await pay.refresh()

    @pytest.mark.asyncio
    async def test_server_side_expiry(self, pay, api):
        await open_qr(pay)
        api.get_payment.return_value = make_session(status="expired")

        assert await pay.poll_once() == "expired"
        assert pay.dialog == Dialog.EXPIRED


class TestRefresh:
    @pytest.mark.asyncio
    async def test_three_refreshes_then_limit(self, pay, api):
        api.refresh_payment.side_effect = [
            make_session(ref=f"10000000000{n}", id=8 + n) for n in range(4)]
        await open_qr(pay)

        for n in range(3):
            s = await pay.refresh()
            assert s.reference_no == f"10000000000{n}"
            assert pay.refresh_count == n + 1
            assert pay.status == "pending"
            assert pay.time_left == 600

        with pytest.raises(RefreshLimitExceeded):
            await pay.refresh()
        assert pay.dialog == Dialog.REFRESH_LIMIT
        assert api.refresh_payment.await_count == 3
        assert pay.session.reference_no == "100000000002"

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_count(self, pay, api):
        await open_qr(pay)
        api.refresh_payment.side_effect = [
            ApiError(409, "Payment already completed"),
            NetworkError("offline"),
        ]

        assert await pay.refresh() is None
        assert pay.error == "Payment already completed"
        assert await pay.refresh() is None
        assert pay.error == "Failed to refresh QR code"
        assert pay.refresh_count == 0
        assert pay.session.reference_no == REF
        assert not pay.refreshing

    @pytest.mark.asyncio
    async def test_refresh_after_expiry(self, pay, api, clock):
        await open_qr(pay)
        clock.advance(600)
        await pay.tick()
        assert pay.dialog == Dialog.EXPIRED

        api.refresh_payment.return_value = make_session(
            ref="100000000009", expire_at=clock() + 600)
        await pay.refresh()
        assert pay.status == "pending"
        assert pay.dialog is None
        assert pay.time_left == 600


class TestLeaving:
    @pytest.mark.asyncio
    async def test_cancel_is_local(self, pay, api, callbacks):
        await open_qr(pay)
        assert pay.request_cancel() == Dialog.CANCEL_CONFIRM

        await pay.cancel()
        assert pay.session is None
        assert pay.status is None
        assert pay.dialog is None
        api.get_payment.assert_not_awaited()
        api.refresh_payment.assert_not_awaited()
        callbacks["on_back"].assert_called_once_with()

    @pytest.mark.asyncio
    async def test_back_to_home_clears_context(self, pay, context,
                                               callbacks):
        await open_qr(pay)
        await pay.back_to_home()

        assert not context.email_verified
        callbacks["on_home"].assert_called_once_with()

    @pytest.mark.asyncio
    async def test_back_to_calendar(self, pay, callbacks):
        await open_qr(pay)
        await pay.back_to_calendar()
        callbacks["on_calendar"].assert_called_once_with()

    @pytest.mark.asyncio
    async def test_close_stops_running_loops(self, make_pay):
        pay = make_pay(auto_start=True)
        await open_qr(pay)
        assert pay.polling and pay.counting

        await pay.close()
        assert not pay.polling and not pay.counting
