from __future__ import annotations
from typing import Optional, Dict, Any, Tuple, List
import time

import orjson
import redis.asyncio as redis


# ---- keys
def k_pay(ref: str) -> str: return f"pay:{ref}"
def k_fulfill(ref: str) -> str: return f"fulfill:{ref}"
def k_idemp(evt: str) -> str: return f"idemp:{evt}"


SEQ_KEY = "pay:seq"
PENDING_INDEX = "pay:pending"

# sessions stay readable for a day after they stop being payable
KEEP_SECONDS = 24 * 3600


def _encode(rec: Dict[str, Any]) -> Dict[str, str]:
    out = {}
    for k, v in rec.items():
        if k == "booking":
            out[k] = orjson.dumps(v or {}).decode()
        elif v is None:
            out[k] = ""
        else:
            out[k] = str(v)
    return out


def _decode(h: Dict[str, str]) -> Dict[str, Any]:
    def _f(k):
        v = h.get(k, "")
        return float(v) if v else None

    return {
        "id": int(h.get("id", "0")),
        "reference_no": h.get("reference_no", ""),
        "order_no": h.get("order_no", ""),
        "status": h.get("status", "pending"),
        "method": h.get("method", "qr"),
        "amount": int(h.get("amount", "0")),
        "currency": h.get("currency", "thb"),
        "qr_code": h.get("qr_code") or None,
        "expire_at": _f("expire_at"),
        "created_at": _f("created_at") or 0.0,
        "paid_at": _f("paid_at"),
        "customer_email": h.get("customer_email", ""),
        "booking": orjson.loads(h.get("booking") or "{}"),
    }


class PaymentSessionStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def create_payment_session(
            self, mapping: Dict[str, Any]) -> Dict[str, Any]:
        ref = mapping["reference_no"]
        pid = int(await self.r.incr(SEQ_KEY))
        rec = dict(mapping)
        rec["id"] = pid
        rec["order_no"] = f"{pid:06d}"
        rec.setdefault("created_at", time.time())
        rec.setdefault("status", "pending")

        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_pay(ref), mapping=_encode(rec))
        pipe.expire(k_pay(ref), self.ttl + KEEP_SECONDS)
        pipe.zadd(PENDING_INDEX, {ref: float(rec["created_at"])})
        await pipe.execute()
        return _decode(_encode(rec))

    async def get_payment_session(self, ref: str) -> Optional[Dict[str, Any]]:
        h = await self.r.hgetall(k_pay(ref))
        return _decode(h) if h else None

    async def set_status(self, ref: str, status: str,
                         paid_at: float | None = None) -> bool:
        if not await self.r.exists(k_pay(ref)):
            return False
        fields = {"status": status}
        if paid_at is not None:
            fields["paid_at"] = str(paid_at)
        await self.r.hset(k_pay(ref), mapping=fields)
        return True

    async def remove_pending(self, ref: str) -> None:
        # only the live index; the hash stays readable until it expires
        await self.r.zrem(PENDING_INDEX, ref)

    async def fulfill_gate(self, ref: str) -> bool:
        ok = await self.r.set(k_fulfill(ref), "1", nx=True, ex=24*3600)
        return bool(ok)

    async def mark_event_seen(self, evt_id: Optional[str]) -> bool:
        if not evt_id:
            return True
        ok = await self.r.set(k_idemp(evt_id), "1", nx=True, ex=3600)
        return bool(ok)

    async def fulfill_and_mark_event(
        self, ref: str, evt_id: Optional[str]
    ) -> Dict[str, Optional[bool]]:
        """
        1) Try the fulfill gate. If it already exists -> short-circuit, the
           idempotency key is not touched.
        2) Gate set now and evt_id given -> mark the event as seen.

        Returns {"already_fulfilled": bool, "event_seen": bool | None}
        (None when the event id wasn't checked).
        """
        if not await self.fulfill_gate(ref):
            return {"already_fulfilled": True, "event_seen": None}
        if evt_id:
            fresh = await self.mark_event_seen(evt_id)
            return {"already_fulfilled": False, "event_seen": not fresh}
        return {"already_fulfilled": False, "event_seen": None}

    async def release_fulfillment(self, ref: str,
                                  evt_id: Optional[str]) -> None:
        keys = [k_fulfill(ref)]
        if evt_id:
            keys.append(k_idemp(evt_id))
        await self.r.delete(*keys)

    async def get_recent_payment_sessions(
            self, limit: int = 200
    ) -> Tuple[int, List[Dict[str, Any]]]:
        total = await self.r.zcard(PENDING_INDEX)
        refs = await self.r.zrevrange(PENDING_INDEX, 0, max(0, limit - 1))

        pipe = self.r.pipeline()
        for ref in refs:
            pipe.hgetall(k_pay(ref))
        rows = await pipe.execute()

        now = time.time()
        items = []
        for ref, h in zip(refs, rows):
            if not h:
                # hash expired underneath the index
                await self.remove_pending(ref)
                continue
            rec = _decode(h)
            items.append({
                "reference_no": ref,
                "created_at": rec["created_at"],
                "age_ms": int(max(0.0, now - rec["created_at"]) * 1000),
                "amount": rec["amount"],
                "email": rec["customer_email"],
                "method": rec["method"],
                "status": rec["status"],
            })
        return int(total), items
