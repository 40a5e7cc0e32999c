"""State management modules."""

from pickup_engine.state.machine import OrderStateMachine, TransitionOutcome
from pickup_engine.state.manager import StateManager
from pickup_engine.state.repository import (
    InMemoryOrderRepository,
    OrderRepository,
    RedisOrderRepository,
)
from pickup_engine.state.workflow import OrderTransitions

__all__ = [
    "InMemoryOrderRepository",
    "OrderRepository",
    "OrderStateMachine",
    "OrderTransitions",
    "RedisOrderRepository",
    "StateManager",
    "TransitionOutcome",
]
