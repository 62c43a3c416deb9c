from __future__ import annotations

import argparse
import os
import secrets
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple

import httpx
import redis.asyncio as redis
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, ORJSONResponse, RedirectResponse
from jinja2 import DictLoader, Environment, select_autoescape
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loguru import logger

from . import logs
from .helpers import (
    can_purchase_for_date, is_valid_date, is_valid_email,
    is_valid_stadium_id, now_ts, to_iso,
)
from .infra.sql import make_async_engine
from .infra.timings import aggregates, dump_ndjson, timeit
from .logs import booking_log, payment_log
from .mailer import Mailer
from .mockpay import (
    EVENT_KINDS, KIND_TO_STATUS, MockPay, PaymentAdapter, build_event,
    encode_event,
)
from .model import catalog
from .model.booking import SUCCESS_STATUSES
from .model.order import Base, EmailVerification, Order
from .model.paymentsession import (
    PaymentSessionStore, new_store, BACKEND as PAYSESSION_BACKEND,
    SESSION_TTL_SECONDS,
)
from .model.pricing import (
    MAX_TICKETS_PER_BOOKING, TICKET_TYPES, product_detail, total_price,
    unit_price, zone_price,
)
from .tokens import TokenError, VERIFICATION_TTL_SECONDS, make_token, read_token
from .zones import find_zone, message

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./ringside.db")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/payments/webhook"
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.environ.get("REDIS_MAX_CONN", "512"))

# verification mails per address and hour, unless it already paid once
VERIFY_RATE_LIMIT = 3
VERIFY_RATE_WINDOW = 3600


engine, SessionAsync, _, gated = make_async_engine(DATABASE_URL)

adapter: PaymentAdapter = MockPay()


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


async def paymentsessions(request: Request) -> PaymentSessionStore:
    if PAYSESSION_BACKEND == "sql":
        async with SessionAsync() as session:
            yield new_store(db=session, gated=gated)
    else:
        yield new_store(r=request.app.state.redis)


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


# ---
# startup / shutdown
# ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logs.configure()
    R = "SQL" if PAYSESSION_BACKEND == "sql" else "Redis"
    logger.info("Ringside is starting up, payment sessions on {}", R)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with SessionAsync() as db:
        async with db.begin():
            if await catalog.seed_demo_catalog(db):
                logger.info("seeded demo catalog")

    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(
            max_connections=512, max_keepalive_connections=512
        ),
    )
    app.state.redis = None
    if PAYSESSION_BACKEND != "sql":
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )
    app.state.mailer = Mailer()

    yield

    await app.state.http.aclose()
    if app.state.redis is not None:
        await app.state.redis.aclose()
        app.state.redis = None
    dump_ndjson()
    await engine.dispose()


app = FastAPI(
    title="Ringside",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)


# ----------------------------
# Helpers
# ----------------------------
def fail(status_code: int, error: str, message: str = "") -> HTTPException:
    return HTTPException(status_code, detail={
        "success": False, "error": error, "message": message or error,
    })


def _check_stadium_and_date(stadium_id: Optional[str],
                            date: Optional[str]) -> None:
    if not stadium_id or not date:
        raise fail(400, "Missing required parameters",
                   "stadiumId and date are required")
    if not is_valid_stadium_id(stadium_id):
        raise fail(400, "Invalid stadium ID")
    if not is_valid_date(date):
        raise fail(400, "Invalid date format",
                   "Date must be in YYYY-MM-DD format")


def _quantity(payload: dict) -> int:
    try:
        qty = int(payload.get("quantity"))
    except (TypeError, ValueError):
        raise fail(400, "Invalid quantity")
    if qty < 1 or qty > MAX_TICKETS_PER_BOOKING:
        raise fail(400, "Invalid quantity",
                   message("max_tickets", max=MAX_TICKETS_PER_BOOKING))
    return qty


def _require_booking_fields(payload: dict) -> None:
    required = ("name", "email", "phone", "stadium", "date", "quantity")
    missing = [k for k in required if not payload.get(k)]
    if not payload.get("zone") and not payload.get("ticketId"):
        missing.append("zone")
    if missing:
        raise fail(400, "Missing required fields",
                   f"missing: {', '.join(missing)}")
    if not is_valid_email(payload.get("email")):
        raise fail(400, "Invalid email", message("invalid_email"))


async def price_booking(db: AsyncSession,
                        payload: dict) -> Tuple[int, str]:
    """Re-price a booking from the catalog -> (amount, product detail).

    The client's totalPrice is never trusted.
    """
    stadium_id = payload.get("stadium")
    date = payload.get("date")
    _check_stadium_and_date(stadium_id, date)
    if not can_purchase_for_date(date):
        raise fail(400, "Date closed", message("date_closed"))
    qty = _quantity(payload)

    async with gated():
        async with db.begin():
            stadium = await catalog.get_stadium(db, stadium_id)
            if stadium is None:
                raise fail(404, "Stadium not found")

            ticket_id = payload.get("ticketId")
            if ticket_id:
                kind = payload.get("ticketType") or "regular"
                if kind not in TICKET_TYPES:
                    raise fail(400, "Invalid ticket type")
                t = await catalog.find_ticket(db, stadium_id, kind,
                                              str(ticket_id))
                if t is None:
                    raise fail(404, "Ticket not found")
                remaining = await catalog.remaining_for_date(db, t, date)
                if remaining < qty:
                    raise fail(409, "Sold out", message("sold_out"))
                price = unit_price({"price": t.price,
                                    "discountPrice": t.discount_price})
                label = t.name
            else:
                zone = find_zone(payload.get("zone", ""))
                if zone is None:
                    raise fail(400, "Invalid zone")
                price = zone_price(zone["id"])
                label = zone["name"]
            stadium_name = stadium.name

    return (total_price(price, qty),
            product_detail(stadium_name, date, label, qty))


def payment_record(rec: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": rec["id"],
        "referenceNo": rec["reference_no"],
        "orderNo": rec["order_no"],
        "status": rec["status"],
        "method": rec["method"],
        "amount": rec["amount"],
        "currency": rec["currency"],
        "qrCode": rec["qr_code"],
        "expireDate": to_iso(rec["expire_at"]),
        "paidAt": to_iso(rec["paid_at"]),
    }


def session_envelope(rec: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "payment": payment_record(rec),
        "qrCode": rec["qr_code"],
        "expireDate": to_iso(rec["expire_at"]),
        "orderNo": rec["order_no"],
        "referenceNo": rec["reference_no"],
    }


async def _open_session(rs: PaymentSessionStore, booking: dict, amount: int,
                        detail: str, method: str) -> Dict[str, Any]:
    session = adapter.create_session(amount, detail)
    created = now_ts()
    async with timeit("paymentsession.create"):
        return await rs.create_payment_session({
            "reference_no": session["reference_no"],
            "method": method,
            "amount": amount,
            "currency": "thb",
            "qr_code": session["qr_code"] if method == "qr" else None,
            "expire_at": created + SESSION_TTL_SECONDS,
            "created_at": created,
            "customer_email": booking.get("email", ""),
            "booking": {**booking, "totalPrice": amount,
                        "productDetail": detail},
        })


# ----------------------------
# Catalog
# ----------------------------
@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "paymentSessions": PAYSESSION_BACKEND,
        "time": to_iso(now_ts()),
    }


@app.get("/api/stadiums")
async def get_stadiums(db: AsyncSession = Depends(get_db)):
    async with gated():
        stadiums = await catalog.list_stadiums(db)
    return {"success": True, "stadiums": stadiums}


@app.get("/api/stadiums/{stadium_id}/tickets")
async def get_stadium_tickets(stadium_id: str,
                              db: AsyncSession = Depends(get_db)):
    if not is_valid_stadium_id(stadium_id):
        raise fail(400, "Invalid stadium ID")
    async with timeit("db.ticket_config"):
        async with gated():
            if await catalog.get_stadium(db, stadium_id) is None:
                raise fail(404, "Stadium not found")
            cfg = await catalog.get_ticket_config(db, stadium_id)
    return {
        "success": True,
        "stadiumId": stadium_id,
        "regularTickets": [t.to_api() for t in cfg.regular_tickets],
        "specialTickets": [t.to_api() for t in cfg.special_tickets],
    }


@app.get("/api/tickets/available")
async def get_available_tickets(stadiumId: Optional[str] = None,
                                date: Optional[str] = None,
                                db: AsyncSession = Depends(get_db)):
    _check_stadium_and_date(stadiumId, date)
    async with timeit("db.available_tickets"):
        async with gated():
            cfg = await catalog.available_tickets(db, stadiumId, date)
    return {
        "success": True,
        "stadiumId": stadiumId,
        "date": date,
        "regularTickets": [t.to_api() for t in cfg.regular_tickets],
        "specialTickets": [t.to_api() for t in cfg.special_tickets],
    }


@app.get("/api/tickets/check-availability")
async def check_availability(stadiumId: Optional[str] = None,
                             date: Optional[str] = None,
                             db: AsyncSession = Depends(get_db)):
    _check_stadium_and_date(stadiumId, date)
    async with timeit("db.check_availability"):
        async with gated():
            ok = await catalog.has_available_tickets(db, stadiumId, date)
    return {
        "success": True,
        "stadiumId": stadiumId,
        "date": date,
        "isAvailable": ok,
    }


# ----------------------------
# E-mail verification
# ----------------------------
@app.post("/api/bookings/init")
async def init_booking(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    _require_booking_fields(payload)
    _check_stadium_and_date(payload.get("stadium"), payload.get("date"))
    if not can_purchase_for_date(payload["date"]):
        raise fail(400, "Date closed", message("date_closed"))
    _quantity(payload)
    email = payload["email"].strip()
    now = now_ts()

    async with timeit("db.init_booking"):
        async with gated():
            async with db.begin():
                recent = (await db.execute(
                    select(func.count()).select_from(EmailVerification).where(
                        EmailVerification.email == email,
                        EmailVerification.created_at > now - VERIFY_RATE_WINDOW,
                    )
                )).scalar_one()
                if recent >= VERIFY_RATE_LIMIT:
                    paid = (await db.execute(
                        select(Order.id).where(Order.customer_email == email)
                        .limit(1)
                    )).first()
                    if paid is None:
                        booking_log.warning(
                            "verification rate limit hit email={}", email)
                        raise fail(
                            429, "Too many requests",
                            "Too many verification requests. "
                            "Please try again later.")

                vid = secrets.token_hex(12)
                expires_at = now + VERIFICATION_TTL_SECONDS
                db.add(EmailVerification(
                    id=vid,
                    email=email,
                    booking_data={**payload, "email": email},
                    created_at=now,
                    expires_at=expires_at,
                ))

    token = make_token(email, vid, expires_at)
    await mailer.send_verification({**payload, "email": email}, token)
    booking_log.info("verification sent vid={} email={}", vid, email)
    return {
        "success": True,
        "message": message("verification_sent"),
        "verificationId": vid,
        "expiresAt": to_iso(expires_at),
    }


@app.post("/api/verify-email")
async def verify_email(payload: dict, db: AsyncSession = Depends(get_db)):
    token = payload.get("token") or ""
    try:
        claims = read_token(token)
    except TokenError as e:
        raise fail(400, e.reason)

    now = now_ts()
    async with gated():
        async with db.begin():
            row = await db.get(EmailVerification, claims["verificationId"])
            if row is None:
                raise fail(400, "Invalid token")
            if row.used_at is not None:
                raise fail(400, "Token already used")
            claimed = (payload.get("email") or claims["email"]).strip()
            if row.email.lower() != claimed.lower() \
                    or row.email.lower() != claims["email"].lower():
                raise fail(400, "Email mismatch")
            if now > row.expires_at:
                raise fail(400, "Token expired")
            res = await db.execute(
                update(EmailVerification)
                .where(EmailVerification.id == row.id,
                       EmailVerification.used_at.is_(None))
                .values(used_at=now)
            )
            if res.rowcount != 1:
                raise fail(400, "Token already used")
            booking = dict(row.booking_data)

    booking_log.info("email verified vid={}", row.id)
    return {"success": True, "email": row.email, "bookingData": booking}


# ----------------------------
# Payments
# ----------------------------
@app.post("/api/payments/create")
async def create_payment(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    _require_booking_fields(payload)
    amount, detail = await price_booking(db, payload)
    if payload.get("totalPrice") not in (None, amount):
        payment_log.warning("client total {} != server total {}",
                            payload.get("totalPrice"), amount)
    rec = await _open_session(rs, payload, amount, detail, "qr")
    payment_log.info("qr session ref={} amount={}",
                     rec["reference_no"], amount)
    return {"success": True, "data": session_envelope(rec)}


@app.post("/api/payments/create-stripe-checkout")
async def create_card_checkout(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    _require_booking_fields(payload)
    amount, detail = await price_booking(db, payload)
    rec = await _open_session(rs, payload, amount, detail, "card")
    ref = rec["reference_no"]
    payment_log.info("card checkout ref={} amount={}", ref, amount)
    return {
        "success": True,
        "data": {
            "url": f"/mockpay/{ref}",
            "sessionId": ref,
            "referenceNo": ref,
            "orderNo": rec["order_no"],
        },
    }


@app.post("/api/payments/{reference_no}/refresh")
async def refresh_payment(
    reference_no: str,
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    async with timeit("paymentsession.get"):
        old = await rs.get_payment_session(reference_no)
    if not old:
        raise fail(404, "Payment not found")
    if old["status"] in SUCCESS_STATUSES:
        raise fail(409, "Payment already completed")

    booking = dict(old["booking"])
    detail = booking.pop("productDetail", "")
    rec = await _open_session(rs, booking, old["amount"], detail, "qr")
    await rs.set_status(reference_no, "expired")
    await rs.remove_pending(reference_no)
    payment_log.info("qr refreshed old={} new={}",
                     reference_no, rec["reference_no"])
    return {"success": True, "data": session_envelope(rec)}


@app.get("/api/payments/reference/{reference_no}")
async def get_payment_by_reference(
    reference_no: str,
    db: AsyncSession = Depends(get_db),
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    async with timeit("paymentsession.get"):
        rec = await rs.get_payment_session(reference_no)

    if rec is None:
        # live session gone; a paid booking is still on record
        async with gated():
            order = (await db.execute(
                select(Order).where(Order.reference_no == reference_no)
            )).scalars().first()
        if order is None:
            raise fail(404, "Payment not found",
                       "The requested payment does not exist")
        data = {
            "id": order.payment_id,
            "referenceNo": order.reference_no,
            "orderNo": order.order_no,
            "status": "paid",
            "amount": order.amount,
            "currency": order.currency,
            "paidAt": to_iso(order.paid_at),
        }
        return {"success": True, "data": data, "status": "paid"}

    if rec["status"] == "pending" and rec["expire_at"] is not None \
            and now_ts() > rec["expire_at"]:
        await rs.set_status(reference_no, "expired")
        await rs.remove_pending(reference_no)
        rec["status"] = "expired"
        payment_log.info("session expired on read ref={}", reference_no)

    return {"success": True, "data": payment_record(rec),
            "status": rec["status"]}


@app.get("/api/payments/pending")
async def api_pending(
    limit: int = 100,
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    limit = max(1, min(limit, 500))
    total, items = await rs.get_recent_payment_sessions(limit=limit)
    return {"items": items, "limit": limit, "total": total}


@app.get("/api/timings")
async def api_timings():
    return {"items": aggregates()}


async def _order_on_record(db: AsyncSession, ref: str) -> bool:
    async with gated():
        row = (await db.execute(
            select(Order.id).where(Order.reference_no == ref)
        )).first()
    return row is not None


async def _reopen_fulfillment(rs: PaymentSessionStore, ref: str,
                              idem: Optional[str], err: Exception) -> None:
    # nothing was written; a redelivery must not look like a replay
    await rs.release_fulfillment(ref, idem)
    payment_log.error("order not recorded ref={}: {}", ref, err)


# ----------------------------
# Webhook endpoint
# ----------------------------
@app.post("/payments/webhook")
async def payments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    rs: PaymentSessionStore = Depends(paymentsessions),
    mailer: Mailer = Depends(get_mailer),
):
    payload = await request.body()
    event = adapter.verify_webhook(payload, dict(request.headers))
    kind = adapter.event_kind(event)
    ref, idem = adapter.event_ids(event)
    if not ref:
        raise HTTPException(400, detail="missing reference_no")
    if kind not in EVENT_KINDS:
        raise HTTPException(400, detail="invalid event type")

    async with timeit("paymentsession.get"):
        ps = await rs.get_payment_session(ref)
    if not ps:
        raise HTTPException(404, detail="payment session not found")

    async with timeit("paymentsession.fulfill"):
        flags = await rs.fulfill_and_mark_event(ref, idem)
    if flags["already_fulfilled"] or (flags["event_seen"] is True):
        return {"ok": True, "idempotent": True}

    if kind != "succeeded":
        await rs.set_status(ref, KIND_TO_STATUS[kind])
        await rs.remove_pending(ref)
        payment_log.info("payment {} ref={}", kind, ref)
        return {
            "ok": True,
            "order_status": "FAILED" if kind == "failed" else "CANCELED",
        }

    booking = ps["booking"]
    paid_at = now_ts()
    qty = int(booking.get("quantity") or 1)
    ticket_id = booking.get("ticketId")
    kind_of_ticket = booking.get("ticketType") if ticket_id else None
    ticket_code = None
    status = "PAID"

    try:
        async with timeit("db.add_order"):
            async with gated():
                async with db.begin():
                    got_seats = True
                    if ticket_id:
                        got_seats = await catalog.deduct_stock(
                            db, booking["stadium"], kind_of_ticket or "regular",
                            str(ticket_id), booking["date"], qty)
                    if got_seats:
                        ticket_code = f"RSD-{uuid.uuid4().hex[:10].upper()}"
                    else:
                        status = "PAID_UNFULFILLED"
                    db.add(Order(
                        id=uuid.uuid4().hex,
                        reference_no=ref,
                        order_no=ps["order_no"],
                        payment_id=ps["id"],
                        stadium_id=booking["stadium"],
                        date=booking["date"],
                        ticket_kind=kind_of_ticket,
                        ticket_id=str(ticket_id) if ticket_id else None,
                        zone=booking.get("zone"),
                        qty=qty,
                        amount=ps["amount"],
                        currency=ps["currency"],
                        customer_name=booking.get("name", ""),
                        customer_email=ps["customer_email"],
                        customer_phone=booking.get("phone", ""),
                        status=status,
                        created_at=ps["created_at"],
                        paid_at=paid_at,
                        ticket_code=ticket_code,
                    ))
    except IntegrityError as e:
        await db.rollback()
        if await _order_on_record(db, ref):
            # an idempotent replay raced the first write
            return {"ok": True, "idempotent": True}
        await _reopen_fulfillment(rs, ref, idem, e)
        raise fail(503, "Order not recorded", "Deliver the event again")
    except SQLAlchemyError as e:
        await db.rollback()
        await _reopen_fulfillment(rs, ref, idem, e)
        raise fail(503, "Order not recorded", "Deliver the event again")

    await rs.set_status(ref, "paid", paid_at=paid_at)
    await rs.remove_pending(ref)
    payment_log.info("payment succeeded ref={} status={}", ref, status)

    await mailer.send_confirmation(
        email=ps["customer_email"],
        name=booking.get("name", ""),
        reference_no=ref,
        order_no=ps["order_no"],
        stadium=(booking.get("stadiumData") or {}).get("name")
        or booking["stadium"],
        date=booking["date"],
        ticket=(booking.get("ticketData") or {}).get("name")
        or booking.get("zone") or ticket_id,
        quantity=qty,
        amount=ps["amount"],
        ticket_code=ticket_code,
    )
    return {"ok": True, "order_status": status}


# ----------------------------
# MockPay UI (simple page with 3 buttons)
# ----------------------------
TEMPLATES = {
    "mockpay.html": """
    <html>
      <head><title>MockPay</title></head>
      <body>
        <h1>MockPay</h1>
        <p>Reference No. <b>{{ ref }}</b> | Order No. {{ order_no }}</p>
        <p>{{ detail }}</p>
        <p>Amount: THB {{ "{:,}".format(amount) }}</p>
        {% if qr_code %}<pre>{{ qr_code }}</pre>{% endif %}
        <p>Status: {{ status }}</p>
        <form method="post" action="/mockpay/{{ ref }}/emit">
          <button name="t" value="succeeded">Pay</button>
          <button name="t" value="failed">Fail</button>
          <button name="t" value="canceled">Cancel</button>
        </form>
        <small>webhook: {{ webhook_url }}</small>
      </body>
    </html>
    """,
}

templates = Environment(loader=DictLoader(TEMPLATES),
                        autoescape=select_autoescape(["html"]))


@app.get("/mockpay/{reference_no}", response_class=HTMLResponse)
async def mockpay_screen(
    reference_no: str,
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    async with timeit("paymentsession.get"):
        ps = await rs.get_payment_session(reference_no)
    if not ps:
        raise HTTPException(404, "payment session not found")
    html = templates.get_template("mockpay.html").render(
        ref=reference_no,
        order_no=ps["order_no"],
        detail=ps["booking"].get("productDetail", ""),
        amount=ps["amount"],
        qr_code=ps["qr_code"],
        status=ps["status"],
        webhook_url=MOCK_WEBHOOK_URL,
    )
    return HTMLResponse(html)


@app.post("/mockpay/{reference_no}/emit")
async def mockpay_emit(
    reference_no: str, request: Request,
    rs: PaymentSessionStore = Depends(paymentsessions),
):
    form = await request.form()
    kind = form.get("t")
    if kind not in EVENT_KINDS:
        raise HTTPException(400, detail="invalid kind")

    async with timeit("paymentsession.get"):
        ps = await rs.get_payment_session(reference_no)
    if not ps:
        raise HTTPException(404, "payment session not found")

    event = build_event(reference_no, kind, ps["amount"], ps["currency"])
    payload, headers = encode_event(event, adapter.secret)

    client_http: httpx.AsyncClient = request.app.state.http
    try:
        r = await client_http.post(MOCK_WEBHOOK_URL, content=payload,
                                   headers=headers)
        r.raise_for_status()
    except httpx.HTTPError as e:
        # the page can be submitted again
        payment_log.warning("webhook delivery failed ref={}: {}",
                            reference_no, e)

    if kind == "succeeded":
        return RedirectResponse(url=f"/success?ref={reference_no}",
                                status_code=303)
    return RedirectResponse(
        url=f"/booking?step=payment&status={kind}&ref={reference_no}",
        status_code=303,
    )


# ----------------------------
# Demo mail outbox
# ----------------------------
@app.get("/mockmail/latest")
async def mockmail_latest(email: str, mailer: Mailer = Depends(get_mailer)):
    if mailer.backend != "outbox":
        raise HTTPException(404, detail="outbox disabled")
    token = mailer.latest_token(email)
    if token is None:
        raise HTTPException(404, detail="no mail for this address")
    return {"email": email, "token": token}


def main(argv=None):
    ap = argparse.ArgumentParser(description="Ringside booking server")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=8000)
    ap.add_argument("--reload", action="store_true",
                    help="Restart on code changes (development)")
    args = ap.parse_args(argv)
    # a single process: the SQLite file and the mail outbox are per process
    uvicorn.run("ringside.server:app", host=args.host, port=args.port,
                reload=args.reload)


if __name__ == "__main__":
    main()
