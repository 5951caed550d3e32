"""Service modules"""
from .event_bus import BackpressurePolicy, BusEvent, EventBus, Subscription
from .price_simulator import PriceSimulator
from .rebalance_engine import SellQuote, compute_collateral_to_sell, generate_execution_plan
from .simulation import RunState, SimulationOrchestrator
from .vault_store import VaultStore

__all__ = [
    "BackpressurePolicy",
    "BusEvent",
    "EventBus",
    "PriceSimulator",
    "RunState",
    "SellQuote",
    "SimulationOrchestrator",
    "Subscription",
    "VaultStore",
    "compute_collateral_to_sell",
    "generate_execution_plan",
]
