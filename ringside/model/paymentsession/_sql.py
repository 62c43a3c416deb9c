from __future__ import annotations
from typing import Optional, Dict, Any, List, Tuple
import time

import orjson
from sqlalchemy import JSON, Column, Float, Integer, String, Text, text
from sqlalchemy.ext.asyncio import AsyncSession

from ...infra.sql import Gated
from ..order.orm import Base


# ------------------------------------------------------------------------------
# Tables (created with the rest of the metadata at startup)
# ------------------------------------------------------------------------------
class PaymentSessionRow(Base):
    __tablename__ = "payment_sessions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    reference_no = Column(String, nullable=False, unique=True)
    order_no = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")
    method = Column(String, nullable=False, default="qr")
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="thb")
    qr_code = Column(Text, nullable=True)
    expire_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)
    customer_email = Column(String, nullable=False, default="")
    booking = Column(JSON, nullable=False)


class PendingPaymentRow(Base):
    __tablename__ = "payment_sessions_pending"
    reference_no = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


class FulfillmentGateRow(Base):
    __tablename__ = "fulfillment_gates"
    reference_no = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


class IdempotencyKeyRow(Base):
    __tablename__ = "idempotency_keys"
    key = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


def _row_to_record(row) -> Dict[str, Any]:
    booking = row["booking"]
    if isinstance(booking, (str, bytes)):
        booking = orjson.loads(booking)
    return {
        "id": int(row["id"]),
        "reference_no": row["reference_no"],
        "order_no": row["order_no"],
        "status": row["status"],
        "method": row["method"],
        "amount": int(row["amount"]),
        "currency": row["currency"],
        "qr_code": row["qr_code"],
        "expire_at": row["expire_at"],
        "created_at": float(row["created_at"]),
        "paid_at": row["paid_at"],
        "customer_email": row["customer_email"],
        "booking": booking or {},
    }


class PaymentSessionStore:
    def __init__(
        self, *, db: AsyncSession, ttl_seconds: int, gated: Gated
    ) -> None:
        self.db = db
        self.ttl = ttl_seconds
        self.gated = gated

    async def create_payment_session(
            self, mapping: Dict[str, Any]) -> Dict[str, Any]:
        m = dict(mapping)
        m.setdefault("created_at", time.time())
        m.setdefault("status", "pending")
        async with self.gated():
            async with self.db.begin():
                pid = (await self.db.execute(text("""
                  INSERT INTO payment_sessions(
                    reference_no, order_no, status, method, amount, currency,
                    qr_code, expire_at, created_at, customer_email, booking
                  ) VALUES (
                    :reference_no, '', :status, :method, :amount, :currency,
                    :qr_code, :expire_at, :created_at, :customer_email,
                    :booking
                  )
                  RETURNING id
                """), {
                    "reference_no": m["reference_no"],
                    "status": m["status"],
                    "method": m.get("method", "qr"),
                    "amount": int(m["amount"]),
                    "currency": m.get("currency", "thb"),
                    "qr_code": m.get("qr_code"),
                    "expire_at": m.get("expire_at"),
                    "created_at": float(m["created_at"]),
                    "customer_email": m.get("customer_email") or "",
                    "booking": orjson.dumps(m.get("booking") or {}).decode(),
                })).scalar_one()
                await self.db.execute(text("""
                  UPDATE payment_sessions SET order_no=:order_no
                  WHERE id=:id
                """), {"order_no": f"{pid:06d}", "id": pid})
                await self.db.execute(text("""
                  INSERT INTO payment_sessions_pending(reference_no, created_at)
                  VALUES(:ref, :created_at)
                  ON CONFLICT (reference_no) DO UPDATE
                  SET created_at=EXCLUDED.created_at
                """), {"ref": m["reference_no"],
                       "created_at": float(m["created_at"])})
        return await self.get_payment_session(m["reference_no"])

    async def get_payment_session(self, ref: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  SELECT * FROM payment_sessions WHERE reference_no=:ref
                """), {"ref": ref})).mappings().first()
                return _row_to_record(row) if row else None

    async def set_status(self, ref: str, status: str,
                         paid_at: float | None = None) -> bool:
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(text("""
                  UPDATE payment_sessions
                  SET status=:status, paid_at=COALESCE(:paid_at, paid_at)
                  WHERE reference_no=:ref
                """), {"status": status, "paid_at": paid_at, "ref": ref})
        return res.rowcount > 0

    async def remove_pending(self, ref: str) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    text(
                        "DELETE FROM payment_sessions_pending "
                        "WHERE reference_no=:ref"
                    ),
                    {"ref": ref}
                )

    async def mark_event_seen(self, evt_id: Optional[str]) -> bool:
        if not evt_id:
            return True
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  INSERT INTO idempotency_keys(key, created_at)
                  VALUES(:k, :now)
                  ON CONFLICT (key) DO NOTHING
                  RETURNING key
                """), {"k": evt_id, "now": time.time()})).first()
        return row is not None

    async def fulfill_and_mark_event(
            self, ref: str, idem: str | None
    ) -> Dict[str, Optional[bool]]:
        """Fulfill gate and event idempotency in one transaction.

        Same result shape as the Redis store:
        {"already_fulfilled": bool, "event_seen": bool | None}
        """
        out = {"already_fulfilled": False, "event_seen": None}
        now = time.time()
        async with self.gated():
            async with self.db.begin():
                gate = (await self.db.execute(
                    text("""
                      INSERT INTO fulfillment_gates(reference_no, created_at)
                      VALUES(:ref, :now)
                      ON CONFLICT (reference_no) DO NOTHING
                      RETURNING reference_no
                    """),
                    {"ref": ref, "now": now},
                )).first()

                if gate is None:
                    out["already_fulfilled"] = True
                    return out

                if idem:
                    idem_row = (await self.db.execute(
                        text("""
                          INSERT INTO idempotency_keys(key, created_at)
                          VALUES(:k, :now)
                          ON CONFLICT (key) DO NOTHING
                          RETURNING key
                        """),
                        {"k": idem, "now": now},
                    )).first()
                    out["event_seen"] = idem_row is None
        return out

    async def release_fulfillment(self, ref: str, idem: str | None) -> None:
        """Undo `fulfill_and_mark_event` after the order write failed."""
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    text("DELETE FROM fulfillment_gates "
                         "WHERE reference_no = :ref"),
                    {"ref": ref},
                )
                if idem:
                    await self.db.execute(
                        text("DELETE FROM idempotency_keys WHERE key = :k"),
                        {"k": idem},
                    )

    async def get_recent_payment_sessions(
        self, limit: int = 200
    ) -> Tuple[int, List[Dict[str, Any]]]:
        async with self.gated():
            async with self.db.begin():
                total = (await self.db.execute(
                    text("SELECT COUNT(*) FROM payment_sessions_pending")
                )).scalar_one()
                rows = (await self.db.execute(text("""
                    SELECT s.*
                    FROM payment_sessions_pending AS p
                    JOIN payment_sessions AS s
                      ON s.reference_no = p.reference_no
                    ORDER BY p.created_at DESC
                    LIMIT :lim
                """), {"lim": int(limit)})).mappings().all()

        now = time.time()
        items: List[Dict[str, Any]] = []
        for r in rows:
            rec = _row_to_record(r)
            items.append({
                "reference_no": rec["reference_no"],
                "created_at": rec["created_at"],
                "age_ms": int(max(0.0, now - rec["created_at"]) * 1000),
                "amount": rec["amount"],
                "email": rec["customer_email"],
                "method": rec["method"],
                "status": rec["status"],
            })
        return int(total), items
