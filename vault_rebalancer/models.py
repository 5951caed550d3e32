"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Union

# Underlying symbol → USD price, WAD-scaled.
PriceMap = Mapping[str, int]


@dataclass(frozen=True)
class TokenMeta:
    """Static token metadata used for pricing, decimals and display."""

    symbol: str
    decimals: int
    name: str = ""
    address: str = ""
    underlying: str | None = None
    display_decimals: int = 4


@dataclass(frozen=True)
class Position:
    """Single asset holding in base units."""

    asset: str
    amount: int

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Position amount must be >= 0, got {self.amount} {self.asset}")


@dataclass(frozen=True)
class Vault:
    """One collateral position backing one debt position."""

    vault_id: str
    collateral: Position
    debt: Position

    def __post_init__(self) -> None:
        if self.collateral.asset == self.debt.asset:
            raise ValueError(
                f"Vault '{self.vault_id}' uses {self.collateral.asset} as both collateral and debt"
            )

    def with_amounts(self, collateral_amount: int, debt_amount: int) -> Vault:
        return Vault(
            vault_id=self.vault_id,
            collateral=Position(self.collateral.asset, collateral_amount),
            debt=Position(self.debt.asset, debt_amount),
        )


# ---------------------------------------------------------------------------
# Rebalance plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WithdrawCollateralAction:
    step: int
    amount: str
    reason: str
    type: str = "withdrawCollateral"


@dataclass(frozen=True)
class SwapAction:
    step: int
    from_token: str
    from_amount: str
    to_token: str
    expected_amount: str
    min_amount: str
    slippage: str
    dex: str
    route: str
    type: str = "swap"


@dataclass(frozen=True)
class RepayDebtAction:
    step: int
    asset: str
    amount: str
    reason: str
    type: str = "repayDebt"


ExecutionAction = Union[WithdrawCollateralAction, SwapAction, RepayDebtAction]

_ACTION_TYPES: dict[str, type] = {
    "withdrawCollateral": WithdrawCollateralAction,
    "swap": SwapAction,
    "repayDebt": RepayDebtAction,
}


@dataclass(frozen=True)
class ProjectedOutcome:
    new_collateral_amount: str
    new_debt_amount: str
    estimated_health_factor: float
    gas_estimate: str
    new_collateral_base: int = 0
    new_debt_base: int = 0
    health_factor_wad: int = 0


@dataclass(frozen=True)
class CallIntent:
    """One call of the atomic bundle — target plus base-unit arguments, unencoded."""

    target: str
    method: str
    args: dict[str, Any] = field(default_factory=dict)
    value: str = "0x0"


@dataclass(frozen=True)
class AtomicExecution:
    type: str = "multicall"
    bundler_compatible: str = ""
    calls: tuple[CallIntent, ...] = ()


@dataclass(frozen=True)
class RebalancePlan:
    target_health_factor: float
    actions: tuple[ExecutionAction, ...]
    projected_outcome: ProjectedOutcome
    atomic_execution: AtomicExecution = field(default_factory=AtomicExecution)


# ---------------------------------------------------------------------------
# Rebalance event (append-only record)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetValuation:
    asset: str
    amount: str
    value_usd: float


@dataclass(frozen=True)
class RebalanceTrigger:
    health_factor: float
    reason: str


@dataclass(frozen=True)
class RebalanceEvent:
    timestamp: str
    vault_id: str
    hf_before: float
    hf_after: float
    trigger: RebalanceTrigger
    collateral: AssetValuation
    debt: AssetValuation
    plan: RebalancePlan

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> RebalanceEvent:
        plan_raw = raw["plan"]
        atomic_raw = plan_raw.get("atomic_execution", {})
        return cls(
            timestamp=raw["timestamp"],
            vault_id=raw["vault_id"],
            hf_before=float(raw["hf_before"]),
            hf_after=float(raw["hf_after"]),
            trigger=RebalanceTrigger(**raw["trigger"]),
            collateral=AssetValuation(**raw["collateral"]),
            debt=AssetValuation(**raw["debt"]),
            plan=RebalancePlan(
                target_health_factor=float(plan_raw["target_health_factor"]),
                actions=tuple(
                    _ACTION_TYPES[a["type"]](**a) for a in plan_raw.get("actions", [])
                ),
                projected_outcome=ProjectedOutcome(**plan_raw["projected_outcome"]),
                atomic_execution=AtomicExecution(
                    type=atomic_raw.get("type", "multicall"),
                    bundler_compatible=atomic_raw.get("bundler_compatible", ""),
                    calls=tuple(CallIntent(**c) for c in atomic_raw.get("calls", [])),
                ),
            ),
        )


# ---------------------------------------------------------------------------
# Simulation results and snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrashTick:
    """One applied price drop."""

    at: str
    symbol: str
    old_price: int
    new_price: int
    drop_pct: float


@dataclass(frozen=True)
class RunResult:
    started: bool
    started_at: str
    ticks_executed: int = 0
    breaching_vault_id: str | None = None
    breach_hf: float | None = None
    extra_ticks_executed: int = 0
    events_recorded: int = 0


@dataclass(frozen=True)
class VaultHealth:
    """Read-only valuation row for one vault at one price snapshot."""

    vault: Vault
    collateral_usd: float
    debt_usd: float
    health_factor: float
    health_factor_wad: int
    status: str


@dataclass(frozen=True)
class ExecutionResult:
    """Before/after view of one applied plan."""

    vault_id: str
    hf_before: float
    hf_after: float
    collateral: Position
    debt: Position
