"""Order storage with compare-and-swap updates."""

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from uuid import UUID

from redis.exceptions import WatchError

from pickup_engine.errors import OrderNotFound, SlotFull, StaleVersion
from pickup_engine.models.history import HistoryEntry
from pickup_engine.models.order import Order, OrderStatus
from pickup_engine.state.manager import StateManager
from pickup_engine.utils.logging import get_logger

logger = get_logger(__name__)


class OrderRepository(ABC):
    """Durable order storage.

    Every update is conditioned on the stored version so concurrent writers
    can never silently overwrite each other.
    """

    @abstractmethod
    async def create(
        self,
        order: Order,
        history_entry: HistoryEntry,
        slot_capacity: int | None = None,
    ) -> None:
        """Store a new order together with its creation entry.

        With ``slot_capacity`` the number of live orders already booked for
        ``order.pickup_time`` is checked in the same atomic step, raising
        ``SlotFull`` when the slot has no room left.
        """

    @abstractmethod
    async def get(self, order_id: UUID) -> Order:
        """Fetch an order or raise ``OrderNotFound``."""

    @abstractmethod
    async def compare_and_swap(
        self,
        order_id: UUID,
        expected_version: int,
        new_order: Order,
        history_entry: HistoryEntry | None = None,
    ) -> None:
        """Replace the order only if its stored version is ``expected_version``.

        Raises ``StaleVersion`` otherwise. The history entry, when given, is
        appended in the same atomic step.
        """

    @abstractmethod
    async def list_ready_older_than(self, threshold: datetime) -> list[Order]:
        """Ready orders whose ``ready_at`` is at or before ``threshold``."""

    @abstractmethod
    async def get_history(self, order_id: UUID) -> list[HistoryEntry]:
        """Audit entries for an order, oldest first."""

    @abstractmethod
    async def list_by_status(self, status: OrderStatus | None = None) -> list[Order]:
        """All orders, optionally filtered by status."""

    async def status_counts(self) -> dict[OrderStatus, int]:
        """Number of orders in each status."""
        counts = Counter(order.status for order in await self.list_by_status())
        return dict(counts)

    async def list_overdue(self, now: datetime) -> list[Order]:
        """Ready orders whose promised pickup time has passed."""
        ready = await self.list_by_status(OrderStatus.READY)
        return [order for order in ready if order.pickup_time < now]

    async def bookings_between(self, start: datetime, end: datetime) -> dict[datetime, int]:
        """Live orders per pickup instant in ``[start, end]``."""
        counts: Counter[datetime] = Counter()
        for order in await self.list_by_status():
            if order.status == OrderStatus.CANCELLED:
                continue
            if start <= order.pickup_time <= end:
                counts[order.pickup_time] += 1
        return dict(counts)


class InMemoryOrderRepository(OrderRepository):
    """Process-local repository, used in development and tests."""

    def __init__(self) -> None:
        self._orders: dict[UUID, Order] = {}
        self._history: dict[UUID, list[HistoryEntry]] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        order: Order,
        history_entry: HistoryEntry,
        slot_capacity: int | None = None,
    ) -> None:
        async with self._lock:
            if order.id in self._orders:
                raise ValueError(f"Order {order.id} already exists")
            if slot_capacity is not None:
                booked = sum(
                    1
                    for existing in self._orders.values()
                    if existing.pickup_time == order.pickup_time
                    and existing.status != OrderStatus.CANCELLED
                )
                if booked >= slot_capacity:
                    raise SlotFull(order.pickup_time, slot_capacity)
            self._orders[order.id] = order.model_copy(deep=True)
            self._history[order.id] = [history_entry]

    async def get(self, order_id: UUID) -> Order:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            return order.model_copy(deep=True)

    async def compare_and_swap(
        self,
        order_id: UUID,
        expected_version: int,
        new_order: Order,
        history_entry: HistoryEntry | None = None,
    ) -> None:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise OrderNotFound(order_id)
            if current.version != expected_version:
                raise StaleVersion(order_id, expected_version, current.version)

            self._orders[order_id] = new_order.model_copy(deep=True)
            if history_entry is not None:
                self._history[order_id].append(history_entry)

    async def list_ready_older_than(self, threshold: datetime) -> list[Order]:
        async with self._lock:
            return [
                order.model_copy(deep=True)
                for order in self._orders.values()
                if order.status == OrderStatus.READY
                and order.status_timestamps.ready_at is not None
                and order.status_timestamps.ready_at <= threshold
            ]

    async def get_history(self, order_id: UUID) -> list[HistoryEntry]:
        async with self._lock:
            if order_id not in self._orders:
                raise OrderNotFound(order_id)
            return list(self._history[order_id])

    async def list_by_status(self, status: OrderStatus | None = None) -> list[Order]:
        async with self._lock:
            return [
                order.model_copy(deep=True)
                for order in self._orders.values()
                if status is None or order.status == status
            ]


class RedisOrderRepository(OrderRepository):
    """Redis-backed repository using WATCH/MULTI/EXEC for compare-and-swap."""

    INDEX_KEY = "orders:index"
    READY_KEY = "orders:ready"

    def __init__(self, state_manager: StateManager):
        self.state = state_manager

    def _order_key(self, order_id: UUID | str) -> str:
        return f"order:{order_id}"

    def _history_key(self, order_id: UUID) -> str:
        return f"order:{order_id}:history"

    def _slot_key(self, pickup_time: datetime) -> str:
        return f"orders:slot:{int(pickup_time.timestamp())}"

    async def create(
        self,
        order: Order,
        history_entry: HistoryEntry,
        slot_capacity: int | None = None,
    ) -> None:
        key = self._order_key(order.id)
        slot_key = self._slot_key(order.pickup_time)
        pipe = await self.state.pipeline()
        async with pipe:
            while True:
                try:
                    # The slot set is watched so concurrent checkouts cannot overbook
                    await pipe.watch(key, slot_key)
                    if await pipe.exists(key):
                        raise ValueError(f"Order {order.id} already exists")
                    if slot_capacity is not None and await pipe.scard(slot_key) >= slot_capacity:
                        raise SlotFull(order.pickup_time, slot_capacity)

                    pipe.multi()
                    pipe.set(key, order.model_dump_json())
                    pipe.rpush(self._history_key(order.id), history_entry.model_dump_json())
                    pipe.sadd(self.INDEX_KEY, str(order.id))
                    pipe.sadd(slot_key, str(order.id))
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        logger.debug("order_stored", order_id=str(order.id), version=order.version)

    async def get(self, order_id: UUID) -> Order:
        data = await self.state.get(self._order_key(order_id))
        if not data:
            raise OrderNotFound(order_id)
        return Order.model_validate(data)

    async def compare_and_swap(
        self,
        order_id: UUID,
        expected_version: int,
        new_order: Order,
        history_entry: HistoryEntry | None = None,
    ) -> None:
        key = self._order_key(order_id)
        pipe = await self.state.pipeline()
        async with pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise OrderNotFound(order_id)

                current = Order.model_validate_json(raw)
                if current.version != expected_version:
                    raise StaleVersion(order_id, expected_version, current.version)

                pipe.multi()
                pipe.set(key, new_order.model_dump_json())
                if history_entry is not None:
                    pipe.rpush(self._history_key(order_id), history_entry.model_dump_json())

                ready_at = new_order.status_timestamps.ready_at
                if new_order.status == OrderStatus.READY and ready_at is not None:
                    pipe.zadd(self.READY_KEY, {str(order_id): ready_at.timestamp()})
                else:
                    pipe.zrem(self.READY_KEY, str(order_id))

                if new_order.status == OrderStatus.CANCELLED:
                    pipe.srem(self._slot_key(new_order.pickup_time), str(order_id))

                await pipe.execute()
            except WatchError:
                # Another writer touched the key between WATCH and EXEC
                raise StaleVersion(order_id, expected_version, None)

        logger.debug(
            "order_swapped",
            order_id=str(order_id),
            expected_version=expected_version,
            version=new_order.version,
        )

    async def list_ready_older_than(self, threshold: datetime) -> list[Order]:
        ids = await self.state.zrangebyscore(self.READY_KEY, "-inf", threshold.timestamp())
        orders = await self._load_many(ids)
        return [order for order in orders if order.status == OrderStatus.READY]

    async def get_history(self, order_id: UUID) -> list[HistoryEntry]:
        raw_entries = await self.state.lrange(self._history_key(order_id))
        if not raw_entries:
            raise OrderNotFound(order_id)
        return [HistoryEntry.model_validate_json(raw) for raw in raw_entries]

    async def list_by_status(self, status: OrderStatus | None = None) -> list[Order]:
        ids = await self.state.smembers(self.INDEX_KEY)
        orders = await self._load_many(sorted(ids))
        return [order for order in orders if status is None or order.status == status]

    async def _load_many(self, ids: list[str]) -> list[Order]:
        raw_orders = await self.state.mget([self._order_key(order_id) for order_id in ids])
        return [Order.model_validate_json(raw) for raw in raw_orders if raw]
