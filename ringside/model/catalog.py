from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import (
    can_purchase_for_date, is_valid_date, is_valid_stadium_id, js_weekday,
    parse_date, thailand_now,
)
from .booking import TicketConfig, TicketInfo
from .order import Stadium, Ticket, TicketDateStock

EVERY_NIGHT = [0, 1, 2, 3, 4, 5, 6]

DEMO_STADIUMS = [
    ("rajadamnern", "Rajadamnern Stadium", "Bangkok"),
    ("lumpinee", "Lumpinee Stadium", "Bangkok"),
    ("bangla", "Bangla Boxing Stadium", "Phuket"),
    ("patong", "Patong Stadium", "Phuket"),
]

# (stadium, ticket id, name, price, discount, seats per night, days)
DEMO_REGULAR = [
    ("rajadamnern", "ringside", "Ringside", 2500, None, 40, [1, 3, 4, 0]),
    ("rajadamnern", "club", "Club Class", 2000, 1800, 80, [1, 3, 4, 0]),
    ("rajadamnern", "standard", "Standard", 1500, None, 200, [1, 3, 4, 0]),
    ("lumpinee", "A", "Ringside A", 1500, None, 60, [2, 5, 6]),
    ("lumpinee", "B", "Stand B", 1000, None, 150, [2, 5, 6]),
    ("bangla", "vip", "VIP Ringside", 2000, None, 30, EVERY_NIGHT),
    ("bangla", "standard", "Standard", 1700, 1500, 120, EVERY_NIGHT),
    ("patong", "ringside", "Ringside", 1800, None, 30, [1, 4, 6]),
    ("patong", "standard", "Standard", 1400, None, 100, [1, 4, 6]),
]


# ----------------------------
# Seed
# ----------------------------
async def seed_demo_catalog(db: AsyncSession, ts: float | None = None) -> bool:
    """Insert the four demo stadiums and their tickets into an empty catalog.

    Returns False (and touches nothing) if stadiums already exist.
    """
    existing = (await db.execute(select(Stadium.id).limit(1))).first()
    if existing is not None:
        return False

    for pos, (sid, name, location) in enumerate(DEMO_STADIUMS):
        db.add(Stadium(id=sid, name=name, location=location, position=pos))
    for sid, tid, name, price, discount, qty, days in DEMO_REGULAR:
        db.add(Ticket(stadium_id=sid, kind="regular", ticket_id=tid,
                      name=name, price=price, discount_price=discount,
                      quantity=qty, days=days))

    # one special fight night two weeks out
    special_day = (thailand_now(ts).date() + timedelta(days=14)).isoformat()
    db.add(Ticket(stadium_id="lumpinee", kind="special", ticket_id="gala",
                  name="Gala Night", price=3500, discount_price=None,
                  quantity=50, days=None, date=special_day))
    await db.flush()
    return True


# ----------------------------
# Queries
# ----------------------------
async def list_stadiums(db: AsyncSession) -> List[Dict[str, str]]:
    rows = (await db.execute(
        select(Stadium).order_by(Stadium.position)
    )).scalars().all()
    return [{"id": s.id, "name": s.name, "location": s.location}
            for s in rows]


async def get_stadium(db: AsyncSession, stadium_id: str) -> Optional[Stadium]:
    return await db.get(Stadium, stadium_id)


async def _tickets(db: AsyncSession, stadium_id: str) -> List[Ticket]:
    return list((await db.execute(
        select(Ticket)
        .where(Ticket.stadium_id == stadium_id)
        .order_by(Ticket.pk)
    )).scalars().all())


async def find_ticket(db: AsyncSession, stadium_id: str, kind: str,
                      ticket_id: str) -> Optional[Ticket]:
    return (await db.execute(
        select(Ticket).where(
            Ticket.stadium_id == stadium_id,
            Ticket.kind == kind,
            Ticket.ticket_id == ticket_id,
        )
    )).scalars().first()


async def _date_stock(db: AsyncSession, t: Ticket,
                      date: str) -> Optional[TicketDateStock]:
    return (await db.execute(
        select(TicketDateStock).where(
            TicketDateStock.stadium_id == t.stadium_id,
            TicketDateStock.kind == t.kind,
            TicketDateStock.ticket_id == t.ticket_id,
            TicketDateStock.date == date,
        )
    )).scalars().first()


def _info(t: Ticket, remaining: int) -> TicketInfo:
    return TicketInfo(
        id=t.ticket_id,
        name=t.name,
        price=t.price,
        kind=t.kind,
        discount_price=t.discount_price,
        remaining_quantity=remaining,
        days=list(t.days or []),
        date=t.date,
    )


async def get_ticket_config(db: AsyncSession, stadium_id: str) -> TicketConfig:
    cfg = TicketConfig()
    for t in await _tickets(db, stadium_id):
        info = _info(t, t.quantity)
        if t.kind == "regular":
            cfg.regular_tickets.append(info)
        else:
            cfg.special_tickets.append(info)
    return cfg


def _sells_on(t: Ticket, date: str) -> bool:
    if t.kind == "regular":
        d = parse_date(date)
        return bool(t.days) and js_weekday(d) in t.days
    return t.date == date


async def remaining_for_date(db: AsyncSession, t: Ticket, date: str) -> int:
    """Seats left for `date`, 0 when the ticket isn't sold that night."""
    if not _sells_on(t, date):
        return 0
    stock = await _date_stock(db, t, date)
    if stock is None:
        return t.quantity
    if not stock.enabled:
        return 0
    return stock.remaining


async def available_tickets(db: AsyncSession, stadium_id: str, date: str,
                            ts: float | None = None) -> TicketConfig:
    cfg = TicketConfig()
    if not is_valid_stadium_id(stadium_id) or not is_valid_date(date):
        return cfg
    if not can_purchase_for_date(date, ts):
        return cfg
    for t in await _tickets(db, stadium_id):
        remaining = await remaining_for_date(db, t, date)
        if remaining <= 0:
            continue
        if t.kind == "regular":
            cfg.regular_tickets.append(_info(t, remaining))
        else:
            cfg.special_tickets.append(_info(t, remaining))
    return cfg


async def has_available_tickets(db: AsyncSession, stadium_id: str, date: str,
                                ts: float | None = None) -> bool:
    return not (await available_tickets(db, stadium_id, date, ts)).empty


async def deduct_stock(db: AsyncSession, stadium_id: str, kind: str,
                       ticket_id: str, date: str, qty: int) -> bool:
    """Take `qty` seats for `date`; False if not enough remain.

    A single conditional UPDATE, so concurrent sales of the last seats can't
    both succeed. Caller owns the transaction.
    """
    t = await find_ticket(db, stadium_id, kind, ticket_id)
    if t is None or not _sells_on(t, date):
        return False
    # first sale of the night opens the counter at the nightly quantity
    await db.execute(text("""
        INSERT INTO ticket_date_stock
          (stadium_id, kind, ticket_id, date, remaining, enabled)
        VALUES (:sid, :kind, :tid, :date, :qty, :enabled)
        ON CONFLICT (stadium_id, kind, ticket_id, date) DO NOTHING
    """), {"sid": t.stadium_id, "kind": t.kind, "tid": t.ticket_id,
           "date": date, "qty": t.quantity, "enabled": True})
    res = await db.execute(
        update(TicketDateStock)
        .where(
            TicketDateStock.stadium_id == t.stadium_id,
            TicketDateStock.kind == t.kind,
            TicketDateStock.ticket_id == t.ticket_id,
            TicketDateStock.date == date,
            TicketDateStock.enabled.is_(True),
            TicketDateStock.remaining >= qty,
        )
        .values(remaining=TicketDateStock.remaining - qty)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
