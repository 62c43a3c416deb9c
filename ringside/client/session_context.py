from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import orjson
import redis.asyncio as redis
from loguru import logger

from ..model.booking import BookingData

CHANNEL_NAME = "email_verification"
EMAIL_VERIFIED_MESSAGE = {"type": "email_verified",
                          "action": "redirect_to_home"}

Message = Dict[str, Any]
Listener = Callable[[Message], Union[None, Awaitable[None]]]


async def _deliver(listeners: List[Listener], msg: Message) -> None:
    for cb in list(listeners):
        res = cb(msg)
        if inspect.isawaitable(res):
            await res


# ----------------------------
# Cross-tab notification
# ----------------------------
class VerificationChannel(ABC):
    @abstractmethod
    async def publish(self, msg: Message) -> None: ...

    @abstractmethod
    def subscribe(self, cb: Listener) -> Callable[[], None]: ...


class LocalChannel(VerificationChannel):
    """In-process broadcast; every context sharing it sees every message."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    async def publish(self, msg: Message) -> None:
        await _deliver(self._listeners, msg)

    def subscribe(self, cb: Listener) -> Callable[[], None]:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)
        return _unsubscribe


class RedisChannel(VerificationChannel):
    """Redis pub/sub, for flows running in separate processes."""

    def __init__(self, r: redis.Redis, name: str = CHANNEL_NAME) -> None:
        self.r = r
        self.name = name
        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None

    async def publish(self, msg: Message) -> None:
        await self.r.publish(self.name, orjson.dumps(msg))

    def subscribe(self, cb: Listener) -> Callable[[], None]:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)
        return _unsubscribe

    async def start(self) -> None:
        if self._task is None:
            pubsub = self.r.pubsub()
            await pubsub.subscribe(self.name)
            self._task = asyncio.create_task(self._listen(pubsub))

    async def _listen(self, pubsub) -> None:
        try:
            async for raw in pubsub.listen():
                if raw.get("type") != "message":
                    continue
                try:
                    msg = orjson.loads(raw["data"])
                except orjson.JSONDecodeError:
                    logger.warning("dropping malformed channel message")
                    continue
                await _deliver(self._listeners, msg)
        finally:
            await pubsub.aclose()

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


# ----------------------------
# Session context
# ----------------------------
class SessionContext:
    """Per-visitor state that outlives a single page.

    `session` holds what the browser keeps for the tab (verification flag,
    verified booking, success snapshot); `local` what survives the tab
    (language).
    """

    def __init__(self, channel: Optional[VerificationChannel] = None,
                 language: str = "en") -> None:
        self.session: Dict[str, str] = {}
        self.local: Dict[str, str] = {"language": language}
        self.channel = channel or LocalChannel()

    # ---- emailVerified
    @property
    def email_verified(self) -> bool:
        return self.session.get("emailVerified") == "true"

    @email_verified.setter
    def email_verified(self, value: bool) -> None:
        if value:
            self.session["emailVerified"] = "true"
        else:
            self.session.pop("emailVerified", None)

    # ---- verifiedBookingData
    @property
    def verified_booking_data(self) -> Optional[BookingData]:
        raw = self.session.get("verifiedBookingData")
        if not raw:
            return None
        return BookingData.from_payload(orjson.loads(raw))

    @verified_booking_data.setter
    def verified_booking_data(self, data: Optional[BookingData]) -> None:
        if data is None:
            self.session.pop("verifiedBookingData", None)
        else:
            self.session["verifiedBookingData"] = \
                orjson.dumps(data.to_payload()).decode()

    # ---- successPageData
    @property
    def success_page_data(self) -> Optional[Dict[str, Any]]:
        raw = self.session.get("successPageData")
        return orjson.loads(raw) if raw else None

    @success_page_data.setter
    def success_page_data(self, data: Optional[Dict[str, Any]]) -> None:
        if data is None:
            self.session.pop("successPageData", None)
        else:
            self.session["successPageData"] = orjson.dumps(data).decode()

    # ---- language
    @property
    def language(self) -> str:
        return self.local.get("language", "en")

    @language.setter
    def language(self, value: str) -> None:
        self.local["language"] = value if value in ("en", "th") else "en"

    def clear_booking(self) -> None:
        for k in ("emailVerified", "verifiedBookingData", "successPageData"):
            self.session.pop(k, None)

    async def publish_email_verified(self) -> None:
        await self.channel.publish(dict(EMAIL_VERIFIED_MESSAGE))

    def subscribe(self, cb: Listener) -> Callable[[], None]:
        return self.channel.subscribe(cb)
