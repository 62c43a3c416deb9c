from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from ..errors import (
    ApiError, BookingValidationError, NetworkError, TicketSoldOut,
)
from ..helpers import (
    can_purchase_for_date, format_date_display, is_valid_email,
    is_valid_stadium_id, now_ts, parse_date,
)
from ..logs import booking_log
from ..model.booking import (
    BookingData, BookingSelection, Step, TicketConfig, TicketInfo,
    VerificationState,
)
from ..model.pricing import (
    TICKET_TYPES, max_quantity, quantity_error, selection_key,
    split_selection_key, total_price, zone_price,
)
from ..zones import find_zone, get_zones, message
from .api import BookingApi
from .availability import AvailabilityCache, TicketConfigCache
from .payment_session import PaymentSessionController
from .session_context import SessionContext


class BookingFlowController:
    """stadium -> date -> ticket + contact -> e-mail check -> payment.

    Validation failures raise BookingValidationError with a localized message
    and leave the state exactly as it was.
    """

    def __init__(self, api: BookingApi, context: Optional[SessionContext] = None,
                 *, configs: Optional[TicketConfigCache] = None,
                 availability: Optional[AvailabilityCache] = None,
                 clock: Callable[[], float] = now_ts) -> None:
        self.api = api
        self.context = context or SessionContext()
        self.configs = configs or TicketConfigCache(api)
        self.availability = availability or AvailabilityCache(api)
        self.clock = clock

        self.step = Step.STADIUM
        self.selection = BookingSelection()
        self.customer: Dict[str, str] = {"name": "", "email": "", "phone": ""}
        self.ticket_config: Optional[TicketConfig] = None
        self.available: Optional[TicketConfig] = None
        self.stadiums: Dict[str, Dict[str, Any]] = {}

        self.pending_booking: Optional[BookingData] = None
        self.payment_data: Optional[BookingData] = None
        self.verification_state: Optional[VerificationState] = None
        self.verification_id: Optional[str] = None
        self.success_data: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None

        self._unsubscribe = self.context.subscribe(self._on_channel_message)

    @property
    def language(self) -> str:
        return self.context.language

    def _invalid(self, key: str, field: Optional[str] = None,
                 **kw: Any) -> BookingValidationError:
        return BookingValidationError(message(key, self.language, **kw),
                                      field=field)

    # ----------------------------
    # Selection
    # ----------------------------
    async def load_stadiums(self) -> list[Dict[str, Any]]:
        stadiums = await self.api.get_stadiums()
        self.stadiums = {s["id"]: s for s in stadiums}
        return stadiums

    async def select_stadium(self, stadium_id: str) -> TicketConfig:
        if not is_valid_stadium_id(stadium_id):
            raise self._invalid("select_all_fields", field="stadium")
        self.selection.stadium_id = stadium_id
        self.selection.date = None
        self.selection.clear_ticket()
        self.available = None
        self.step = Step.DATE
        self.ticket_config = await self.configs.get(stadium_id)
        for t in self.ticket_config.special_tickets:
            if t.date:
                self.availability.mark_volatile(stadium_id, t.date)
        return self.ticket_config

    async def select_date(self, date: str) -> Optional[TicketConfig]:
        if not self.selection.stadium_id:
            raise self._invalid("select_all_fields", field="stadium")
        if parse_date(date) is None:
            raise self._invalid("invalid_date", field="date")
        if not can_purchase_for_date(date, self.clock()):
            raise self._invalid("date_closed", field="date")
        self.selection.date = date
        self.selection.clear_ticket()
        self.step = Step.PAYMENT
        await self._load_available()
        return self.available

    async def _load_available(self) -> None:
        self.error = None
        try:
            self.available = await self.api.get_available_tickets(
                self.selection.stadium_id, self.selection.date)
        except (ApiError, NetworkError) as e:
            booking_log.warning("available tickets failed: {}", e)
            self.available = None
            self.error = str(e)

    @property
    def uses_legacy_zones(self) -> bool:
        # stadiums without a ticket setup sell the flat-rate zones
        return self.ticket_config is not None and self.ticket_config.empty

    def zones(self) -> list:
        return get_zones(self.language)

    def _selected_ticket(self) -> Optional[TicketInfo]:
        sel = self.selection
        if sel.ticket_type not in TICKET_TYPES or self.available is None:
            return None
        return self.available.find(sel.ticket_type, sel.zone_or_ticket_id)

    def select_ticket(self, key: str) -> None:
        ticket_type, ticket_id = split_selection_key(key)
        if ticket_type is None:
            if find_zone(ticket_id) is None:
                raise self._invalid("select_all_fields", field="zone")
            kind = "zone"
        elif ticket_type in TICKET_TYPES:
            if self.available is not None \
                    and self.available.find(ticket_type, ticket_id) is None:
                raise TicketSoldOut(message("sold_out", self.language),
                                    field="zone")
            kind = ticket_type
        else:
            raise self._invalid("select_all_fields", field="zone")

        sel = self.selection
        if (sel.ticket_type, sel.zone_or_ticket_id) != (kind, ticket_id):
            sel.quantity = 1
        sel.ticket_type = kind
        sel.zone_or_ticket_id = ticket_id

    @property
    def remaining(self) -> Optional[int]:
        t = self._selected_ticket()
        return t.remaining_quantity if t is not None else None

    @property
    def max_quantity(self) -> int:
        return max_quantity(self.remaining)

    def set_quantity(self, quantity: int) -> int:
        err = quantity_error(quantity, self.remaining, self.language)
        if err:
            raise BookingValidationError(err, field="quantity")
        self.selection.quantity = quantity
        return quantity

    def set_customer(self, name: str, email: str, phone: str) -> None:
        self.customer = {
            "name": (name or "").strip(),
            "email": (email or "").strip(),
            "phone": (phone or "").strip(),
        }

    @property
    def unit_price(self) -> int:
        sel = self.selection
        if sel.ticket_type == "zone":
            return zone_price(sel.zone_or_ticket_id)
        t = self._selected_ticket()
        return t.unit_price if t is not None else 0

    @property
    def total_price(self) -> int:
        if not self.selection.complete:
            return 0
        return total_price(self.unit_price, self.selection.quantity)

    # ----------------------------
    # Verification
    # ----------------------------
    def _build_booking(self) -> BookingData:
        sel = self.selection
        if not sel.complete:
            raise self._invalid("select_all_fields")
        err = quantity_error(sel.quantity, self.remaining, self.language)
        if err:
            raise BookingValidationError(err, field="quantity")
        c = self.customer
        if not (c["name"] and c["email"] and c["phone"]):
            raise self._invalid("fill_all_fields", field="customer")
        if not is_valid_email(c["email"]):
            raise self._invalid("invalid_email", field="email")

        stadium = self.stadiums.get(sel.stadium_id) or {"id": sel.stadium_id}
        ticket_id = ticket_type = ticket_data = zone_data = None
        if sel.ticket_type == "zone":
            zone_data = dict(find_zone(sel.zone_or_ticket_id, self.language))
            zone_key = sel.zone_or_ticket_id
        else:
            t = self._selected_ticket()
            if t is None:
                raise TicketSoldOut(message("sold_out", self.language),
                                    field="zone")
            ticket_id, ticket_type = t.id, t.kind
            ticket_data = {"id": t.id, "name": t.name, "type": t.kind,
                           "price": t.unit_price}
            zone_key = selection_key(t.kind, t.id)

        return BookingData(
            stadium=sel.stadium_id,
            date=sel.date,
            zone=zone_key,
            quantity=sel.quantity,
            total_price=self.total_price,
            date_display=format_date_display(sel.date, self.language),
            name=c["name"],
            email=c["email"],
            phone=c["phone"],
            ticket_id=ticket_id,
            ticket_type=ticket_type,
            stadium_data=stadium,
            ticket_data=ticket_data,
            zone_data=zone_data,
        )

    async def proceed_to_payment(self) -> BookingData:
        booking = self._build_booking()
        # optimistic: the verification screen shows while the mail goes out
        self.pending_booking = booking
        self.step = Step.EMAIL_VERIFICATION
        self.verification_state = VerificationState.PENDING_CONFIRMATION
        await self._send_verification()
        return booking

    async def _send_verification(self) -> None:
        self.error = None
        try:
            self.verification_id = await self.api.init_booking(
                self.pending_booking)
        except (ApiError, NetworkError) as e:
            booking_log.warning("verification mail failed: {}", e)
            self.verification_state = VerificationState.FAILED
            if isinstance(e, ApiError) and e.status_code == 429:
                self.error = e.message
            else:
                self.error = message("verification_failed", self.language)
            return
        self.verification_state = VerificationState.CONFIRMED
        booking_log.info("verification requested id={}",
                         self.verification_id)

    async def resend_verification(self) -> Optional[VerificationState]:
        if self.step != Step.EMAIL_VERIFICATION or self.pending_booking is None:
            raise self._invalid("select_all_fields")
        self.verification_state = VerificationState.PENDING_CONFIRMATION
        await self._send_verification()
        return self.verification_state

    async def verify_email(self, token: str) -> BookingData:
        """Consume the mailed token; ApiError carries the reason on failure."""
        data = await self.api.verify_email(token)
        self.context.verified_booking_data = data
        self.context.email_verified = True
        await self.context.publish_email_verified()
        return data

    def resume_verified(self) -> bool:
        data = self.context.verified_booking_data
        if data is None:
            return False
        self.pending_booking = data
        self.payment_data = data
        self.selection = BookingSelection(
            stadium_id=data.stadium,
            date=data.date,
            zone_or_ticket_id=data.ticket_id or data.zone,
            ticket_type=data.ticket_type or "zone",
            quantity=data.quantity,
        )
        self.customer = {"name": data.name, "email": data.email,
                         "phone": data.phone}
        self.step = Step.PAYMENT
        self.verification_state = VerificationState.VERIFIED
        # the flag stays for the payment step
        self.context.verified_booking_data = None
        return True

    def _on_channel_message(self, msg: Dict[str, Any]) -> None:
        if msg.get("type") != "email_verified":
            return
        if self.step != Step.PAYMENT:
            booking_log.info("verified in another tab, back to start")
            self.reset()

    # ----------------------------
    # Navigation
    # ----------------------------
    def back(self) -> Step:
        if self.step == Step.DATE:
            self.selection = BookingSelection()
            self.ticket_config = None
            self.step = Step.STADIUM
        elif self.step == Step.EMAIL_VERIFICATION:
            self.step = Step.PAYMENT
            self.payment_data = None
            self.verification_state = None
        elif self.step == Step.PAYMENT and self.payment_data is not None:
            self.payment_data = None
        elif self.step == Step.PAYMENT:
            self.selection.clear_ticket()
            self.available = None
            self.step = Step.DATE
        elif self.step == Step.SUCCESS:
            self.reset()
        return self.step

    def back_to_calendar(self) -> Step:
        self.selection.date = None
        self.selection.clear_ticket()
        self.available = None
        self.payment_data = None
        self.verification_state = None
        self.step = Step.DATE
        return self.step

    def to_url_params(self) -> Dict[str, str]:
        out = {}
        if self.selection.stadium_id:
            out["stadium"] = self.selection.stadium_id
        if self.selection.date:
            out["date"] = self.selection.date
        out["step"] = self.step.value
        return out

    def apply_url_params(self, params: Dict[str, str]) -> Step:
        stadium = params.get("stadium")
        date = params.get("date")
        step = params.get("step")

        if not stadium and not date:
            if step == Step.PAYMENT.value and self.payment_data is not None:
                self.step = Step.PAYMENT
                return self.step
            self.selection = BookingSelection()
            self.step = Step.STADIUM
            return self.step

        if stadium and is_valid_stadium_id(stadium):
            if stadium != self.selection.stadium_id:
                self.selection = BookingSelection(stadium_id=stadium)
        if date and parse_date(date) is not None:
            if date != self.selection.date:
                self.selection.clear_ticket()
            self.selection.date = date

        try:
            self.step = Step(step) if step else (
                Step.PAYMENT if self.selection.date else Step.DATE)
        except ValueError:
            self.step = Step.DATE
        if self.step == Step.DATE:
            self.selection.clear_ticket()
        return self.step

    async def reload(self) -> None:
        """Refetch what the current selection shows (after a URL restore)."""
        if self.selection.stadium_id:
            self.ticket_config = await self.configs.get(
                self.selection.stadium_id)
        if self.selection.stadium_id and self.selection.date:
            await self._load_available()

    # ----------------------------
    # Hand-off
    # ----------------------------
    def complete(self, success_data: Dict[str, Any]) -> None:
        self.success_data = success_data
        self.context.success_page_data = success_data
        self.step = Step.SUCCESS

    def reset(self) -> None:
        self.step = Step.STADIUM
        self.selection = BookingSelection()
        self.customer = {"name": "", "email": "", "phone": ""}
        self.ticket_config = None
        self.available = None
        self.pending_booking = None
        self.payment_data = None
        self.verification_state = None
        self.verification_id = None
        self.error = None

    def payment_controller(self, **kw: Any) -> PaymentSessionController:
        if self.payment_data is None:
            raise self._invalid("select_all_fields")
        return PaymentSessionController(
            self.api, self.context, self.payment_data,
            language=self.language,
            on_back=self.back,
            on_calendar=self.back_to_calendar,
            on_home=self.reset,
            on_success=self.complete,
            **kw,
        )

    def close(self) -> None:
        self._unsubscribe()
        self.availability.clear()
