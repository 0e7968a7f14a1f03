"""
Realtime change notification.

ChangeFeed fans product-table changes out to subscribed views in-process.
Delivery is at-most-once with no replay: a view that misses an event stays
stale until its next full refetch. Subscriptions are explicit handles; a view
unsubscribes when it goes away and receives nothing afterwards.

RealtimeChannel feeds a ChangeFeed from the hosted realtime transport and
reconnects with exponential backoff when the transport drops.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from storefront.core.config import StorefrontConfig
from storefront.utils.logger import get_logger, kv

logger = get_logger("realtime.channel")

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_TABLES = "*"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Optional[Dict[str, Any]] = None


Callback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: Callback):
        self._feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class ChangeFeed:
    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, table: str, callback: Callback) -> Subscription:
        subscription = Subscription(self, table, callback)
        self._subscriptions.setdefault(table, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.table, [])
        if subscription in subs:
            subs.remove(subscription)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, []))

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to subscribers of ``event.table`` and of all tables. Returns deliveries made."""
        delivered = 0
        targets = self._subscriptions.get(event.table, []) + self._subscriptions.get(ALL_TABLES, [])
        for subscription in list(targets):
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
                delivered += 1
            except Exception as e:
                # A failing view must not break delivery to the others
                logger.error("realtime: %s", kv(method="publish", table=event.table, type=event.type, result="callback_error", error=e))
        return delivered


@dataclass
class ReconnectPolicy:
    base: float = 1.0
    factor: float = 2.0
    cap: float = 30.0
    max_attempts: Optional[int] = None

    @classmethod
    def from_config(cls, config: StorefrontConfig) -> "ReconnectPolicy":
        return cls(
            base=config.realtime_backoff_base,
            factor=config.realtime_backoff_factor,
            cap=config.realtime_backoff_cap,
            max_attempts=config.realtime_max_attempts,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect ``attempt`` (1-based)."""
        return min(self.cap, self.base * (self.factor ** max(0, attempt - 1)))

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt > self.max_attempts


Source = Callable[[], AsyncIterator[ChangeEvent]]


class RealtimeChannel:
    """
    Pumps events from ``source`` (a factory that opens the transport and
    yields ChangeEvents) into ``feed``. A source that ends or raises counts as
    a dropped connection. The attempt counter resets once an event arrives.
    """

    def __init__(self, source: Source, feed: ChangeFeed, policy: Optional[ReconnectPolicy] = None,
                 sleep: Callable[[float], Any] = asyncio.sleep):
        self._source = source
        self._feed = feed
        self._policy = policy or ReconnectPolicy()
        self._sleep = sleep
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self.attempts = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> None:
        while not self._closed:
            try:
                async for event in self._source():
                    if self._closed:
                        return
                    self.attempts = 0
                    self._feed.publish(event)
                reason = "transport closed"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__

            if self._closed:
                return
            self.attempts += 1
            if self._policy.exhausted(self.attempts):
                logger.error("realtime: %s", kv(method="run", result="gave_up", attempts=self.attempts - 1, reason=reason))
                self._closed = True
                return
            delay = self._policy.delay(self.attempts)
            logger.warning("realtime: %s", kv(method="run", result="reconnecting", attempt=self.attempts, delay=delay, reason=reason))
            await self._sleep(delay)

    def start(self) -> asyncio.Task:
        """Schedule ``run`` on the running loop."""
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def close(self) -> None:
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
