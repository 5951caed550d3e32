"""Crash simulation orchestrator — ticks prices, detects breaches, emits plans."""
from __future__ import annotations

import asyncio
import enum
import logging
import random
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from ..config import AppConfig
from ..errors import InvalidAmountFormatError
from ..health import (
    STATUS_BREACH,
    STATUS_HEALTHY,
    STATUS_LIQUIDATABLE,
    STATUS_MONITOR,
    classify,
    compute_health_factor,
    hf_to_float,
    position_value_usd,
)
from ..interfaces.event_store import EventStore
from ..interfaces.notifier import Notifier
from ..interfaces.random_source import RandomSource
from ..logging_setup import log_section
from ..models import (
    AssetValuation,
    CrashTick,
    ExecutionResult,
    Position,
    PriceMap,
    RebalanceEvent,
    RebalancePlan,
    RebalanceTrigger,
    RunResult,
    Vault,
    VaultHealth,
)
from ..notifications import EmailNotifier, TelegramNotifier
from ..persistence import JsonFileEventStore
from ..wad import format_units, parse_amount, wad_to_float
from .event_bus import (
    EVENT_HEALTH,
    EVENT_REBALANCE,
    EVENT_SIMULATION_START,
    EVENT_TICK,
    BackpressurePolicy,
    EventBus,
)
from .price_simulator import PriceSimulator
from .rebalance_engine import compute_collateral_to_sell, generate_execution_plan
from .vault_store import VaultStore

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    BREACHED = "breached"
    EXTRA_TICKS = "extra_ticks"


class SimulationOrchestrator:
    """Owns the simulation context and drives single-flight crash runs."""

    def __init__(
        self,
        config: AppConfig,
        event_store: EventStore | None = None,
        notifiers: list[Notifier] | None = None,
        rng: RandomSource | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._risk = config.risk
        self._tokens = config.token_registry()
        self._store = VaultStore(config.build_seed_vaults(), config.build_seed_prices())
        self._rng: RandomSource = rng or random.Random(config.simulation.seed)

        sim = config.simulation
        self._simulator = PriceSimulator(
            self._store,
            sim.volatile_assets,
            self._rng,
            drop_range=(sim.drop_min, sim.drop_max),
            delay_range_ms=(sim.tick_delay_min_ms, sim.tick_delay_max_ms),
        )

        self._event_store: EventStore = event_store or JsonFileEventStore(
            config.persistence.events_path
        )
        self._bus = bus or EventBus(
            queue_size=config.event_bus.queue_size,
            policy=BackpressurePolicy(config.event_bus.policy),
        )

        if notifiers is None:
            notifiers = []
            if config.notifications.telegram.enabled:
                notifiers.append(TelegramNotifier(config.notifications.telegram))
            if config.notifications.email.enabled:
                notifiers.append(EmailNotifier(config.notifications.email))
        self._notifiers: list[Notifier] = notifiers

        self._state = RunState.IDLE
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # State and read-only queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> VaultStore:
        return self._store

    def is_running(self) -> bool:
        return self._state is not RunState.IDLE

    def request_stop(self) -> None:
        """Ask an active run to stop at its next loop boundary."""
        self._stop.set()

    def current_vaults(self) -> list[Vault]:
        return self._store.vaults()

    def current_prices(self) -> PriceMap:
        return self._store.prices()

    def _hf(self, vault: Vault, prices: PriceMap | None = None) -> int:
        return compute_health_factor(
            vault,
            self._store.prices() if prices is None else prices,
            self._risk.liquidation_threshold_wad,
            self._tokens,
        )

    def health_factor_of(self, vault_id: str) -> int:
        """Current HF of one vault as a WAD int."""
        return self._hf(self._store.get(vault_id))

    def vault_health(self) -> list[VaultHealth]:
        prices = self._store.prices()
        rows: list[VaultHealth] = []
        for vault in self._store.vaults():
            hf = self._hf(vault, prices)
            rows.append(
                VaultHealth(
                    vault=vault,
                    collateral_usd=wad_to_float(position_value_usd(vault.collateral, prices, self._tokens), 2),
                    debt_usd=wad_to_float(position_value_usd(vault.debt, prices, self._tokens), 2),
                    health_factor=hf_to_float(hf),
                    health_factor_wad=hf,
                    status=classify(hf, self._risk.trigger_hf_wad, self._risk.target_hf_wad),
                )
            )
        return rows

    def health_report(self) -> dict[str, Any]:
        """Prices, per-vault status and a count of vaults per status."""
        rows = self.vault_health()
        statuses = (STATUS_HEALTHY, STATUS_MONITOR, STATUS_BREACH, STATUS_LIQUIDATABLE)
        summary: dict[str, int] = {"total": len(rows)}
        summary.update({s: sum(1 for r in rows if r.status == s) for s in statuses})
        return {
            "prices": self._price_snapshot(),
            "summary": summary,
            "vaults": [
                {
                    "vault_id": r.vault.vault_id,
                    "collateral": self._describe_position(r.vault.collateral.asset, r.vault.collateral.amount),
                    "debt": self._describe_position(r.vault.debt.asset, r.vault.debt.amount),
                    "collateral_usd": r.collateral_usd,
                    "debt_usd": r.debt_usd,
                    "health_factor": r.health_factor,
                    "status": r.status,
                }
                for r in rows
            ],
        }

    async def list_rebalances(self) -> list[RebalanceEvent]:
        return await self._event_store.list_all()

    # ------------------------------------------------------------------
    # Plans and execution
    # ------------------------------------------------------------------

    def build_plan(self, vault_id: str) -> RebalancePlan:
        return generate_execution_plan(
            self._store.get(vault_id),
            self._store.prices(),
            self._tokens,
            self._risk,
            self._config.execution,
        )

    async def apply_plan(self, vault_id: str, new_collateral_base: int, new_debt_base: int) -> Vault:
        return await self._store.apply_plan(vault_id, new_collateral_base, new_debt_base)

    async def execute_plan(self, vault_id: str) -> ExecutionResult:
        """Solve at current prices and apply the projected post-trade state."""
        vault = self._store.get(vault_id)
        prices = self._store.prices()
        hf_before = self._hf(vault, prices)
        quote = compute_collateral_to_sell(
            vault,
            prices,
            self._tokens,
            target_hf_wad=self._risk.target_hf_wad,
            liquidation_threshold_wad=self._risk.liquidation_threshold_wad,
            slippage_bps=self._risk.slippage_bps,
        )
        updated = await self.apply_plan(vault_id, quote.new_collateral_base, quote.new_debt_base)
        return self._execution_result(updated, hf_before)

    async def execute_latest_plans(self) -> list[ExecutionResult]:
        """Apply the projected outcome of the latest recorded event per vault.

        Every projected amount is parsed and checked before any vault is
        touched; ``InvalidAmountFormatError`` leaves all vaults unchanged.
        """
        latest: dict[str, RebalanceEvent] = {}
        for event in await self._event_store.list_all():
            latest[event.vault_id] = event

        decimals = self._tokens.decimals
        pending: list[tuple[Vault, int, int]] = []
        for vault_id, event in latest.items():
            try:
                vault = self._store.get(vault_id)
            except KeyError:
                logger.warning("Skipping event for unknown vault %s", vault_id)
                continue
            projected = event.plan.projected_outcome
            collateral_base, collateral_symbol = parse_amount(projected.new_collateral_amount, decimals)
            debt_base, debt_symbol = parse_amount(projected.new_debt_amount, decimals)
            if collateral_symbol != vault.collateral.asset or debt_symbol != vault.debt.asset:
                raise InvalidAmountFormatError(
                    f"Projected amounts for {vault_id} name {collateral_symbol}/{debt_symbol}, "
                    f"vault holds {vault.collateral.asset}/{vault.debt.asset}"
                )
            pending.append((vault, collateral_base, debt_base))

        results: list[ExecutionResult] = []
        for vault, collateral_base, debt_base in pending:
            hf_before = self._hf(self._store.get(vault.vault_id))
            updated = await self.apply_plan(vault.vault_id, collateral_base, debt_base)
            results.append(self._execution_result(updated, hf_before))
        return results

    def _execution_result(self, vault: Vault, hf_before: int) -> ExecutionResult:
        result = ExecutionResult(
            vault_id=vault.vault_id,
            hf_before=hf_to_float(hf_before),
            hf_after=hf_to_float(self._hf(vault)),
            collateral=vault.collateral,
            debt=vault.debt,
        )
        logger.info(
            "Executed plan for %s: HF %.3f -> %.3f", vault.vault_id, result.hf_before, result.hf_after
        )
        return result

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _price_snapshot(self) -> dict[str, float]:
        return {symbol: PriceSimulator.price_to_float(price) for symbol, price in self._store.prices().items()}

    def _describe_position(self, asset: str, amount: int) -> str:
        return format_units(amount, self._tokens.decimals_of(asset), 6)

    def _display_amount(self, position: Position) -> str:
        return format_units(
            position.amount,
            self._tokens.decimals_of(position.asset),
            self._tokens.display_decimals(position.asset),
        )

    def _log_vault(self, vault: Vault, prices: PriceMap) -> None:
        collateral_usd = position_value_usd(vault.collateral, prices, self._tokens)
        debt_usd = position_value_usd(vault.debt, prices, self._tokens)
        logger.info(
            "Vault %s | HF=%.3f | Collateral %s=%s ($%.2f) | Debt %s=%s ($%.2f)",
            vault.vault_id,
            hf_to_float(self._hf(vault, prices)),
            vault.collateral.asset,
            self._display_amount(vault.collateral),
            wad_to_float(collateral_usd, 2),
            vault.debt.asset,
            self._display_amount(vault.debt),
            wad_to_float(debt_usd, 2),
        )

    def _valuation(self, asset: str, amount: int, prices: PriceMap) -> AssetValuation:
        value_usd = position_value_usd(Position(asset, amount), prices, self._tokens)
        return AssetValuation(
            asset=asset,
            amount=self._describe_position(asset, amount),
            value_usd=wad_to_float(value_usd, 2),
        )

    def _build_rebalance_alert(self, event: RebalanceEvent) -> str:
        lines = [
            f"🚨 REBALANCE — HF {event.hf_before:.3f}",
            "",
            f"Vault: {event.vault_id}",
            f"Collateral: {event.collateral.amount} {event.collateral.asset} (${event.collateral.value_usd:,.2f})",
            f"Debt: {event.debt.amount} {event.debt.asset} (${event.debt.value_usd:,.2f})",
            "",
            f"Target HF: {event.plan.target_health_factor}",
        ]
        for action in event.plan.actions:
            lines.append(f"  {action.step}. {_describe_action(action)}")
        projected = event.plan.projected_outcome
        lines += [
            "",
            f"Projected: {projected.new_collateral_amount} / {projected.new_debt_amount} · "
            f"HF ≈ {projected.estimated_health_factor}",
            "",
            f"{self._now_str()}",
        ]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Core workflow
    # ------------------------------------------------------------------

    async def start_run(
        self,
        extra_ticks_after_breach: int = 0,
        tick_delay_override: float | None = None,
        forced_drop_symbol: str | None = None,
    ) -> RunResult:
        """Run one crash simulation until the first breach (plus extra ticks).

        A call made while a run is active returns immediately with
        ``started=False`` and ``ticks_executed=0`` and touches nothing.

        Args:
            extra_ticks_after_breach: Ticks to keep running after the first
                breach; each still-breached vault gets a fresh plan per tick.
            tick_delay_override: Seconds between ticks instead of the random
                configured window.
            forced_drop_symbol: Always crash this asset instead of a random
                volatile one.
        """
        started_at = self._now_str()
        # No await between the check and the transition.
        if self._state is not RunState.IDLE:
            logger.warning("Simulation already running; start request ignored")
            return RunResult(started=False, started_at=started_at)
        self._state = RunState.RUNNING
        self._stop.clear()

        try:
            return await self._run(
                started_at,
                max(0, int(extra_ticks_after_breach)),
                tick_delay_override,
                forced_drop_symbol,
            )
        finally:
            self._state = RunState.IDLE

    async def _run(
        self,
        started_at: str,
        extra_ticks: int,
        tick_delay_override: float | None,
        forced_drop_symbol: str | None,
    ) -> RunResult:
        self._store.reset()
        log_section(logger, "Simulation start")
        prices = self._store.prices()
        logger.info("Initial prices (USD): %s", self._price_snapshot())
        await self._bus.publish(EVENT_SIMULATION_START, {"prices": self._price_snapshot()})
        for vault in self._store.vaults():
            self._log_vault(vault, prices)

        ticks = 0
        while True:
            if self._stop.is_set():
                logger.info("Stop requested after %d tick(s)", ticks)
                return RunResult(started=True, started_at=started_at, ticks_executed=ticks)

            breach = self._find_breach()
            if breach is not None:
                vault, hf = breach
                self._state = RunState.BREACHED
                await self._handle_breach(vault, hf)
                events = 1
                extra_executed = 0
                if extra_ticks > 0:
                    self._state = RunState.EXTRA_TICKS
                    extra_executed, extra_events = await self._continue_after_breach(
                        extra_ticks, ticks, tick_delay_override, forced_drop_symbol
                    )
                    events += extra_events
                result = RunResult(
                    started=True,
                    started_at=started_at,
                    ticks_executed=ticks,
                    breaching_vault_id=vault.vault_id,
                    breach_hf=hf_to_float(hf, 6),
                    extra_ticks_executed=extra_executed,
                    events_recorded=events,
                )
                await self._send_log(
                    f"Simulation finished after {ticks} tick(s) (+{extra_executed} extra); "
                    f"breach: {vault.vault_id} HF {result.breach_hf:.3f}"
                )
                return result

            if ticks >= self._config.simulation.max_ticks:
                logger.warning("No breach after %d ticks; giving up", ticks)
                return RunResult(started=True, started_at=started_at, ticks_executed=ticks)

            await asyncio.sleep(self._delay(tick_delay_override))
            await self._tick(ticks + 1, forced_drop_symbol)
            ticks += 1

    def _delay(self, override: float | None) -> float:
        if override is not None:
            return max(0.0, override)
        return self._simulator.tick_delay_seconds()

    def _find_breach(self) -> tuple[Vault, int] | None:
        """First vault (in store order) whose HF is below the trigger."""
        prices = self._store.prices()
        trigger = self._risk.trigger_hf_wad
        for vault in self._store.vaults():
            hf = self._hf(vault, prices)
            if hf < trigger:
                log_section(logger, "Breach detected")
                logger.info(
                    "Vault %s HF=%.3f < %s", vault.vault_id, hf_to_float(hf), self._risk.trigger_hf
                )
                return vault, hf
        return None

    async def _tick(self, tick_number: int, forced_drop_symbol: str | None) -> CrashTick:
        tick = self._simulator.apply_tick(forced_drop_symbol)
        logger.info(
            "[Tick %d] Price drop %s: -%.2f%% %.2f -> %.2f",
            tick_number,
            tick.symbol,
            tick.drop_pct,
            PriceSimulator.price_to_float(tick.old_price),
            PriceSimulator.price_to_float(tick.new_price),
        )
        await self._bus.publish(
            EVENT_TICK,
            {
                "at": tick.at,
                "symbol": tick.symbol,
                "old": PriceSimulator.price_to_float(tick.old_price),
                "new": PriceSimulator.price_to_float(tick.new_price),
                "drop_pct": tick.drop_pct,
            },
        )

        prices = self._store.prices()
        health: dict[str, float] = {}
        for vault in self._store.vaults():
            self._log_vault(vault, prices)
            health[vault.vault_id] = hf_to_float(self._hf(vault, prices))
        await self._bus.publish(EVENT_HEALTH, {"tick": tick_number, "health_factors": health})
        return tick

    async def _continue_after_breach(
        self,
        extra_ticks: int,
        ticks_so_far: int,
        tick_delay_override: float | None,
        forced_drop_symbol: str | None,
    ) -> tuple[int, int]:
        """Keep crashing for ``extra_ticks`` ticks; returns (ticks run, events recorded)."""
        log_section(logger, f"Continuing after breach for {extra_ticks} tick(s)")
        executed = 0
        events = 0
        trigger = self._risk.trigger_hf_wad
        while executed < extra_ticks:
            if self._stop.is_set():
                logger.info("Stop requested during extra ticks")
                break
            await asyncio.sleep(self._delay(tick_delay_override))
            await self._tick(ticks_so_far + executed + 1, forced_drop_symbol)

            prices = self._store.prices()
            for vault in self._store.vaults():
                hf = self._hf(vault, prices)
                if hf < trigger:
                    await self._handle_breach(vault, hf)
                    events += 1
            executed += 1
        return executed, events

    async def _handle_breach(self, vault: Vault, hf_before: int) -> RebalanceEvent:
        """Plan, record, publish and alert. Vault positions are left as-is."""
        prices = self._store.prices()
        plan = generate_execution_plan(
            vault, prices, self._tokens, self._risk, self._config.execution
        )

        log_section(logger, "Rebalancing plan")
        logger.info("Vault %s target HF=%s", vault.vault_id, plan.target_health_factor)
        for action in plan.actions:
            logger.info("[Action %d] %s", action.step, _describe_action(action))
        projected = plan.projected_outcome
        logger.info(
            "Projected → Collateral=%s, Debt=%s, HF≈%s (%s)",
            projected.new_collateral_amount,
            projected.new_debt_amount,
            projected.estimated_health_factor,
            classify(projected.health_factor_wad, self._risk.trigger_hf_wad, self._risk.target_hf_wad),
        )

        hf_before_float = hf_to_float(hf_before, 6)
        event = RebalanceEvent(
            timestamp=self._now_str(),
            vault_id=vault.vault_id,
            hf_before=hf_before_float,
            hf_after=projected.estimated_health_factor,
            trigger=RebalanceTrigger(
                health_factor=hf_before_float,
                reason=f"Below rebalance threshold of {self._risk.trigger_hf}",
            ),
            collateral=self._valuation(vault.collateral.asset, vault.collateral.amount, prices),
            debt=self._valuation(vault.debt.asset, vault.debt.amount, prices),
            plan=plan,
        )

        # Failures here propagate to the run's caller.
        await self._event_store.append(event)
        logger.info("Persisted rebalance event for %s", vault.vault_id)

        await self._bus.publish(EVENT_REBALANCE, asdict(event))
        await self._send_alert(
            self._build_rebalance_alert(event),
            subject=f"🚨 Rebalance required: {vault.vault_id}",
        )
        return event


def _describe_action(action: Any) -> str:
    if action.type == "withdrawCollateral":
        return f"withdrawCollateral {action.amount} — {action.reason}"
    if action.type == "swap":
        return (
            f"swap {action.from_amount} {action.from_token} -> {action.to_token} | "
            f"expected={action.expected_amount} min={action.min_amount} @ {action.slippage} "
            f"via {action.dex} ({action.route})"
        )
    return f"repayDebt {action.amount} {action.asset} — {action.reason}"
