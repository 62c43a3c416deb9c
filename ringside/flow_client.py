#!/usr/bin/env python3
"""
Ringside flow client (async)

Drives complete bookings through the client controllers against a running
server, the way a visitor clicks through the site:
  1) pick stadium -> next night on sale -> first regular ticket
  2) POST /api/bookings/init, read the token from /mockmail/latest,
     POST /api/verify-email
  3) POST /api/payments/create (QR)
  4) POST /mockpay/{ref}/emit  (t=succeeded|failed|canceled)
  5) poll GET /api/payments/reference/{ref} until it leaves pending

It records timings per booking and prints an aggregate report.

Usage:
  python -m ringside.flow_client --base http://localhost:8000 \
                                 --total 50 --concurrency 10

Notes:
- Needs the server running with MAIL_BACKEND=outbox so tokens are readable.
- Every booking uses a fresh e-mail, so the verification rate limit never
  kicks in.
"""

import argparse
import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

import httpx
from loguru import logger

from .client.api import BookingApi
from .client.booking_flow import BookingFlowController
from .client.payment_session import PaymentSessionController
from .client.session_context import SessionContext
from .errors import (
    ApiError, BookingValidationError, EmailNotVerified, NetworkError,
)
from .helpers import js_weekday, thailand_now
from .model.booking import (
    CANCELLED, Dialog, FAILED, PAID, PENDING, TicketConfig,
    VerificationState,
)
from .model.pricing import selection_key

OUTCOMES = {PAID: "PAID", FAILED: "FAILED", CANCELLED: "CANCELED"}
LOOKAHEAD_DAYS = 14


def _rand_email() -> str:
    name = ''.join(
        random.choices(string.ascii_lowercase + string.digits, k=10)
    )
    return f"{name}@example.com"


def _rand_phone() -> str:
    return "08" + ''.join(random.choices(string.digits, k=8))


def next_sale_date(cfg: TicketConfig,
                   ts: float | None = None) -> Optional[str]:
    """First night after today on which any regular ticket is scheduled."""
    days = set()
    for t in cfg.regular_tickets:
        days.update(t.days)
    today = thailand_now(ts).date()
    for n in range(1, LOOKAHEAD_DAYS + 1):
        d = today + timedelta(days=n)
        if js_weekday(d) in days:
            return d.isoformat()
    return None


@dataclass
class Result:
    ok: bool
    stadium: str
    outcome: str  # PAID/FAILED/CANCELED/SOLD_OUT/TIMEOUT/ERROR
    t_verify: float = 0.0
    t_create: float = 0.0
    t_observed: float = 0.0  # emit until a final status is seen
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Result] = field(default_factory=list)

    def add(self, r: Result):
        self.results.append(r)

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def summary(self) -> Dict[str, float]:
        done = [r for r in self.results if r.outcome in OUTCOMES.values()]
        lat = [r.t_observed for r in done if r.t_observed > 0]
        verify = [r.t_verify for r in self.results if r.t_verify > 0]

        def pct(p):
            if not lat:
                return 0.0
            x = sorted(lat)
            k = int(max(0, min(len(x)-1, round(p/100*(len(x)-1)))))
            return x[k]
        return {
            "total": len(self.results),
            "ok": sum(1 for r in self.results if r.ok),
            "paid": self.count("PAID"),
            "failed": self.count("FAILED"),
            "canceled": self.count("CANCELED"),
            "sold_out": self.count("SOLD_OUT"),
            "timeout": self.count("TIMEOUT"),
            "error": self.count("ERROR"),
            "p50_s": pct(50),
            "p90_s": pct(90),
            "p99_s": pct(99),
            "avg_s": (sum(lat)/len(lat)) if lat else 0.0,
            "verify_avg_s": (sum(verify)/len(verify)) if verify else 0.0,
        }

    def print(self, elapsed_s: float):
        s = self.summary()
        print("\n=== Booking Flow Summary ===")
        print(
            f"Total: {int(s['total'])}   OK: {int(s['ok'])}   "
            f"PAID: {int(s['paid'])}   FAILED: {int(s['failed'])}   "
            f"CANCELED: {int(s['canceled'])}   "
            f"SOLD_OUT: {int(s['sold_out'])}   TIMEOUT: {int(s['timeout'])}"
            f"   ERROR: {int(s['error'])}"
        )
        print(f"E-mail verification: avg {s['verify_avg_s']:.3f}s")
        print(
            f"Latency (observed payment resolution): "
            f"avg {s['avg_s']:.3f}s   p50 {s['p50_s']:.3f}s   "
            f"p90 {s['p90_s']:.3f}s   p99 {s['p99_s']:.3f}s"
        )
        if elapsed_s > 0:
            print(
                f"Wall time: {elapsed_s:.3f}s   "
                f"Throughput: {s['total']/elapsed_s:.1f} bookings/s"
            )


async def _verified_flow(api: BookingApi, stadium: str, quantity: int,
                         r: Result) -> Optional[BookingFlowController]:
    flow = BookingFlowController(api, SessionContext())
    await flow.load_stadiums()
    cfg = await flow.select_stadium(stadium)
    date = next_sale_date(cfg)
    if date is None:
        r.outcome = "SOLD_OUT"
        r.err = f"no nights on sale for {stadium}"
        return None
    available = await flow.select_date(date)
    candidates = [t for t in (available.regular_tickets if available else [])
                  if t.remaining_quantity >= quantity]
    if not candidates:
        r.outcome = "SOLD_OUT"
        return None
    flow.select_ticket(selection_key("regular", candidates[0].id))
    flow.set_quantity(quantity)
    email = _rand_email()
    flow.set_customer("Load Tester", email, _rand_phone())

    t0 = time.perf_counter()
    await flow.proceed_to_payment()
    if flow.verification_state != VerificationState.CONFIRMED:
        r.err = f"verification: {flow.error}"
        return None
    token = await api.latest_mail_token(email)
    if token is None:
        r.err = "no verification mail in outbox"
        return None
    await flow.verify_email(token)
    flow.resume_verified()
    r.t_verify = time.perf_counter() - t0
    return flow


async def _settle(pay: PaymentSessionController, poll_interval_s: float,
                  poll_timeout_s: float) -> str:
    deadline = time.perf_counter() + poll_timeout_s
    while time.perf_counter() < deadline:
        status = await pay.poll_once()
        if status != PENDING or pay.stalled:
            return status
        await asyncio.sleep(poll_interval_s)
    return pay.status


async def one_booking(
    api: BookingApi,
    stadium: str,
    quantity: int,
    emit_kind: str,
    poll_interval_s: float,
    poll_timeout_s: float,
) -> Result:
    r = Result(ok=False, stadium=stadium, outcome="ERROR")
    pay = None
    try:
        flow = await _verified_flow(api, stadium, quantity, r)
        if flow is None:
            return r

        pay = flow.payment_controller(auto_start=False)
        dialog = await pay.request_payment("qr")
        if dialog == Dialog.SOLD_OUT:
            r.outcome = "SOLD_OUT"
            return r
        t1 = time.perf_counter()
        session = await pay.confirm_disclaimer()
        if session is None:
            r.err = f"create: {pay.error}"
            return r
        r.t_create = time.perf_counter() - t1

        t2 = time.perf_counter()
        await api.emit_mock_event(session.reference_no, emit_kind)
        status = await _settle(pay, poll_interval_s, poll_timeout_s)
        r.t_observed = time.perf_counter() - t2
    except (ApiError, NetworkError, BookingValidationError,
            EmailNotVerified) as e:
        r.err = str(e)
        logger.warning("booking at {} failed: {}", stadium, e)
        return r
    finally:
        if pay is not None:
            await pay.close()

    r.ok = True
    r.outcome = OUTCOMES.get(status, "TIMEOUT")
    return r


async def run_flows(
    base: str,
    total: int,
    concurrency: int,
    stadiums: List[str],
    quantity: int,
    fail_rate: float,
    cancel_rate: float,
    poll_interval_s: float,
    poll_timeout_s: float,
) -> Stats:
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()

    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        base_url=base, limits=limits, timeout=30.0,
        headers={"User-Agent": "RingsideFlow/1.0"},
    ) as client:
        api = BookingApi(base, client=client)

        async def worker(n: int):
            async with sem:
                rnd = random.random()
                if rnd < fail_rate:
                    emit_kind = "failed"
                elif rnd < fail_rate + cancel_rate:
                    emit_kind = "canceled"
                else:
                    emit_kind = "succeeded"

                res = await one_booking(
                    api, random.choice(stadiums), quantity, emit_kind,
                    poll_interval_s, poll_timeout_s,
                )
                stats.add(res)

        tasks = [asyncio.create_task(worker(i)) for i in range(total)]
        await asyncio.gather(*tasks)

    return stats


def main():
    ap = argparse.ArgumentParser(description="Ringside booking flow client")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--total", type=int, default=20,
                    help="Total bookings to run")
    ap.add_argument("--concurrency", type=int, default=5,
                    help="Concurrent visitors")
    ap.add_argument("--stadium", action="append", dest="stadiums",
                    help="Stadium id to book (repeatable, default: all "
                         "demo stadiums)")
    ap.add_argument("--quantity", type=int, default=1,
                    help="Tickets per booking")
    ap.add_argument("--fail-rate", type=float, default=0.0,
                    help="Fraction of payments to mark as failed")
    ap.add_argument("--cancel-rate", type=float, default=0.0,
                    help="Fraction of payments to mark as canceled")
    ap.add_argument("--poll-interval", type=float, default=0.1,
                    help="Seconds between status polls")
    ap.add_argument("--poll-timeout", type=float, default=10.0,
                    help="Max seconds to wait for a final status")
    args = ap.parse_args()

    stadiums = args.stadiums or ["rajadamnern", "lumpinee", "bangla",
                                 "patong"]
    if args.fail_rate + args.cancel_rate > 0.95:
        print(
            "Warning: combined fail+cancel rate is very high; "
            "few PAID outcomes will occur."
        )

    t_start = time.perf_counter()
    stats = asyncio.run(run_flows(
        base=args.base,
        total=args.total,
        concurrency=args.concurrency,
        stadiums=stadiums,
        quantity=args.quantity,
        fail_rate=args.fail_rate,
        cancel_rate=args.cancel_rate,
        poll_interval_s=args.poll_interval,
        poll_timeout_s=args.poll_timeout,
    ))
    elapsed = time.perf_counter() - t_start
    stats.print(elapsed)


if __name__ == "__main__":
    main()
