from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import (
    ApiError, BookingValidationError, EmailNotVerified, NetworkError,
    RefreshLimitExceeded, SessionTerminated,
)
from ..helpers import now_ts, to_iso
from ..logs import payment_log
from ..model.booking import (
    BookingData, CANCELLED, Dialog, EXPIRED, FAILED, PENDING, PaymentSession,
    SUCCESS_STATUSES,
)
from ..zones import message
from .api import BookingApi
from .session_context import SessionContext

Callback = Callable[..., Any]

POLL_INTERVAL = 2.0
MAX_POLL_BACKOFF = 30.0
MAX_POLL_FAILURES = 5
MAX_REFRESHES = 3
MAX_COUNTDOWN = 600
SUCCESS_REDIRECT_DELAY = 1.0

PAYMENT_METHODS = ("qr", "card")


async def _call(cb: Optional[Callback], *args: Any) -> None:
    if cb is None:
        return
    res = cb(*args)
    if asyncio.iscoroutine(res):
        await res


class PaymentSessionController:
    """QR / card checkout for one verified booking.

    Owns two loops while a QR session is pending: a 1 s countdown and the
    status poll. Both stop on success, on a terminal status and on close().
    Pass `auto_start=False` to drive `tick()` and `poll_once()` by hand.
    """

    def __init__(self, api: BookingApi, context: SessionContext,
                 booking: BookingData, *,
                 language: Optional[str] = None,
                 clock: Callable[[], float] = now_ts,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 auto_start: bool = True,
                 on_back: Optional[Callback] = None,
                 on_calendar: Optional[Callback] = None,
                 on_home: Optional[Callback] = None,
                 on_success: Optional[Callback] = None) -> None:
        self.api = api
        self.context = context
        self.booking = booking
        self.language = language or context.language
        self.clock = clock
        self.sleep = sleep
        self.auto_start = auto_start
        self.on_back = on_back
        self.on_calendar = on_calendar
        self.on_home = on_home
        self.on_success = on_success

        self.session: Optional[PaymentSession] = None
        self.status: Optional[str] = None
        self.time_left = MAX_COUNTDOWN
        self.refresh_count = 0
        self.refreshing = False
        self.dialog: Optional[Dialog] = None
        self.error: Optional[str] = None
        self.pending_method: Optional[str] = None
        self.checkout_url: Optional[str] = None

        self.poll_failures = 0
        self.stalled = False
        self.polling = False
        self.counting = False

        self.success_data: Optional[Dict[str, Any]] = None
        self.redirect_url: Optional[str] = None
        self.redirected = False

        self._poll_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None
        self.redirect_task: Optional[asyncio.Task] = None
        self._retired: list[asyncio.Task] = []

    # ----------------------------
    # Before a session exists
    # ----------------------------
    async def request_payment(self, method: str) -> Optional[Dialog]:
        """Gatekeeping before money moves; returns the dialog to show."""
        if method not in PAYMENT_METHODS:
            raise BookingValidationError(f"unknown payment method {method!r}",
                                         field="method")
        self.pending_method = method
        self.error = None

        if not self.context.email_verified:
            self.dialog = Dialog.EMAIL_WARNING
            return self.dialog

        b = self.booking
        if not (b.name and b.email and b.phone):
            raise BookingValidationError(
                message("fill_all_fields", self.language), field="customer")

        try:
            available = await self._ticket_still_available()
        except (ApiError, NetworkError) as e:
            self.error = str(e)
            raise
        if not available:
            self.dialog = Dialog.SOLD_OUT
            payment_log.info("sold out before payment stadium={} date={}",
                             b.stadium, b.date)
            return self.dialog

        self.dialog = Dialog.REFUND_DISCLAIMER
        return self.dialog

    async def _ticket_still_available(self) -> bool:
        b = self.booking
        cfg = await self.api.get_available_tickets(b.stadium, b.date)
        if b.ticket_id and b.ticket_type:
            t = cfg.find(b.ticket_type, b.ticket_id)
            return t is not None and t.remaining_quantity >= b.quantity
        # legacy zones just need the night to be on sale
        return not cfg.empty

    async def confirm_email_warning(self) -> Optional[Dialog]:
        self.context.email_verified = True
        self.dialog = None
        return await self.request_payment(self.pending_method or "qr")

    async def cancel_email_warning(self) -> None:
        self.dialog = None
        await _call(self.on_back)

    async def confirm_disclaimer(self) -> Any:
        if not self.context.email_verified:
            self.dialog = Dialog.EMAIL_WARNING
            raise EmailNotVerified(self.booking.email)
        self.dialog = None
        if self.pending_method == "card":
            return await self.create_card_checkout()
        return await self.create_session()

    def dismiss_dialog(self) -> None:
        self.dialog = None

    # ----------------------------
    # Sessions
    # ----------------------------
    def _compute_time_left(self) -> int:
        if self.session is None or self.session.expire_at is None:
            return MAX_COUNTDOWN
        left = int(self.session.expire_at - self.clock())
        return max(0, min(MAX_COUNTDOWN, left))

    def _adopt(self, session: PaymentSession) -> None:
        self.session = session
        self.status = PENDING
        self.dialog = None
        self.error = None
        self.poll_failures = 0
        self.stalled = False
        self.time_left = self._compute_time_left()

    async def create_session(self) -> Optional[PaymentSession]:
        try:
            session = await self.api.create_payment(self.booking)
        except (ApiError, NetworkError) as e:
            payment_log.warning("create payment failed: {}", e)
            self.error = message("payment_failed", self.language)
            return None
        self._adopt(session)
        self.refresh_count = 0
        payment_log.info("payment session ref={} expires={}",
                         session.reference_no, to_iso(session.expire_at))
        if self.auto_start:
            self.start()
        return session

    async def create_card_checkout(self) -> Optional[str]:
        try:
            data = await self.api.create_card_checkout(self.booking)
        except (ApiError, NetworkError) as e:
            payment_log.warning("card checkout failed: {}", e)
            self.error = message("checkout_failed", self.language)
            return None
        # the success page reads this after the gateway sends us back
        self.success_data = self._success_snapshot(
            data["referenceNo"], data.get("orderNo", ""), method="card")
        self.context.success_page_data = self.success_data
        self.checkout_url = data["url"]
        return self.checkout_url

    def _success_snapshot(self, reference_no: str, order_no: str,
                          method: str = "qr",
                          paid_at: Optional[float] = None) -> Dict[str, Any]:
        return {
            "referenceNo": reference_no,
            "orderNo": order_no,
            "paymentMethod": method,
            "amount": self.booking.total_price,
            "paidAt": to_iso(paid_at),
            "bookingData": self.booking.to_payload(),
        }

    # ----------------------------
    # Countdown
    # ----------------------------
    async def tick(self) -> int:
        if self.session is None or self.status != PENDING:
            return self.time_left
        # recomputed from expire_at, never goes back up
        self.time_left = min(self.time_left, self._compute_time_left())
        if self.time_left == 0:
            await self._reconcile_expired()
        return self.time_left

    async def _reconcile_expired(self) -> None:
        self._stop_timers()
        ref = self.session.reference_no
        try:
            s = await self.api.get_payment(ref)
        except (ApiError, NetworkError) as e:
            payment_log.warning("expiry reconcile failed ref={}: {}", ref, e)
            s = None
        if s is not None and s.succeeded:
            await self._on_paid(s)
            return
        self.status = EXPIRED
        self.dialog = Dialog.EXPIRED
        payment_log.info("payment session expired ref={}", ref)

    # ----------------------------
    # Polling
    # ----------------------------
    def next_poll_delay(self) -> float:
        if self.poll_failures == 0:
            return POLL_INTERVAL
        return min(MAX_POLL_BACKOFF, POLL_INTERVAL * 2 ** self.poll_failures)

    async def poll_once(self) -> Optional[str]:
        if self.session is None or self.status != PENDING:
            return self.status
        ref = self.session.reference_no
        try:
            s = await self.api.get_payment(ref)
        except (ApiError, NetworkError) as e:
            self.poll_failures += 1
            payment_log.warning("status poll {} failed ref={}: {}",
                                self.poll_failures, ref, e)
            if self.poll_failures >= MAX_POLL_FAILURES:
                self.stalled = True
                self.polling = False
                self.error = message("stalled", self.language)
            return self.status

        self.poll_failures = 0
        if s.succeeded:
            await self._on_paid(s)
        elif s.terminal:
            self._stop_timers()
            self.status = s.status
            if s.status == EXPIRED:
                self.dialog = Dialog.EXPIRED
            else:
                self.error = message("payment_declined", self.language)
            payment_log.info("payment {} ref={}", s.status, ref)
        return self.status

    def resume_polling(self) -> None:
        if not self.stalled:
            return
        self.stalled = False
        self.poll_failures = 0
        self.error = None
        if self.auto_start:
            self._start_polling()

    async def _poll_loop(self) -> None:
        while self.polling and self.status == PENDING and not self.stalled:
            await self.sleep(self.next_poll_delay())
            if not self.polling:
                break
            await self.poll_once()

    async def _countdown_loop(self) -> None:
        while self.counting and self.status == PENDING:
            await self.sleep(1.0)
            if not self.counting:
                break
            await self.tick()

    # ----------------------------
    # Success
    # ----------------------------
    async def _on_paid(self, s: PaymentSession) -> None:
        self._stop_timers()
        self.status = s.status
        order_no = f"{s.id:06d}" if s.id else self.session.order_no
        self.success_data = self._success_snapshot(
            self.session.reference_no, order_no, paid_at=self.clock())
        self.context.success_page_data = self.success_data
        self.redirect_url = f"/success?ref={self.session.reference_no}"
        payment_log.info("payment {} ref={}", s.status,
                         self.session.reference_no)
        self.redirect_task = asyncio.create_task(self._redirect_later())

    async def _redirect_later(self) -> None:
        await self.sleep(SUCCESS_REDIRECT_DELAY)
        self.redirected = True
        await _call(self.on_success, self.success_data)

    # ----------------------------
    # Refresh / cancel / recovery
    # ----------------------------
    async def refresh(self) -> Optional[PaymentSession]:
        if self.session is None or self.refreshing:
            return None
        if self.status in SUCCESS_STATUSES | {FAILED, CANCELLED}:
            # paid, or declined by the payer: a new QR won't help
            raise SessionTerminated(self.status)
        if self.refresh_count + 1 > MAX_REFRESHES:
            self.dialog = Dialog.REFRESH_LIMIT
            payment_log.info("refresh limit reached ref={}",
                             self.session.reference_no)
            raise RefreshLimitExceeded(MAX_REFRESHES)

        self.refreshing = True
        self.error = None
        try:
            session = await self.api.refresh_payment(
                self.session.reference_no)
        except (ApiError, NetworkError) as e:
            payment_log.warning("refresh failed ref={}: {}",
                                self.session.reference_no, e)
            self.error = (e.message if isinstance(e, ApiError) and e.message
                          else message("refresh_failed", self.language))
            return None
        finally:
            self.refreshing = False

        self._stop_timers()
        self._adopt(session)
        self.refresh_count += 1
        if self.auto_start:
            self.start()
        return session

    def request_cancel(self) -> Dialog:
        self.dialog = Dialog.CANCEL_CONFIRM
        return self.dialog

    async def cancel(self) -> None:
        """Drop the session locally; the backend lets it expire."""
        await self.close()
        self.session = None
        self.status = None
        self.dialog = None
        self.error = None
        self.refresh_count = 0
        self.time_left = MAX_COUNTDOWN
        await _call(self.on_back)

    async def back_to_calendar(self) -> None:
        await self.close()
        self.dialog = None
        await _call(self.on_calendar)

    async def back_to_home(self) -> None:
        await self.close()
        self.dialog = None
        self.context.clear_booking()
        await _call(self.on_home)

    # ----------------------------
    # Task plumbing
    # ----------------------------
    def _start_polling(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self.polling = True
            self._poll_task = asyncio.create_task(self._poll_loop())

    def start(self) -> None:
        if self.session is None or self.status != PENDING:
            return
        self._start_polling()
        if self._countdown_task is None or self._countdown_task.done():
            self.counting = True
            self._countdown_task = asyncio.create_task(self._countdown_loop())

    def _stop_timers(self) -> None:
        self.polling = False
        self.counting = False
        current = asyncio.current_task()
        for task in (self._poll_task, self._countdown_task):
            if task is None:
                continue
            if task is not current and not task.done():
                task.cancel()
            self._retired.append(task)
        # start() must be able to spawn fresh loops right away
        self._poll_task = None
        self._countdown_task = None

    async def close(self) -> None:
        self._stop_timers()
        current = asyncio.current_task()
        tasks = self._retired + [self.redirect_task]
        self._retired = []
        self.redirect_task = None
        for task in tasks:
            if task is None or task is current:
                continue
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
