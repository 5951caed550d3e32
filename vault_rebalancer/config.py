"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import Position, TokenMeta, Vault
from .tokens import TokenRegistry
from .wad import BPS_DENOMINATOR, bps_to_wad, to_base, to_wad

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskConfig:
    liquidation_threshold: float = 0.85
    trigger_hf: float = 1.15
    target_hf: float = 1.25
    slippage_bps: int = 50

    @property
    def liquidation_threshold_wad(self) -> int:
        return to_wad(self.liquidation_threshold)

    @property
    def trigger_hf_wad(self) -> int:
        return to_wad(self.trigger_hf)

    @property
    def target_hf_wad(self) -> int:
        return to_wad(self.target_hf)

    @property
    def slippage_wad(self) -> int:
        return bps_to_wad(self.slippage_bps)


@dataclass(frozen=True)
class SimulationConfig:
    tick_delay_min_ms: int = 2000
    tick_delay_max_ms: int = 3000
    drop_min: float = 0.05
    drop_max: float = 0.15
    volatile_assets: tuple[str, ...] = ("wstETH", "weETH")
    max_ticks: int = 1000
    extra_ticks_after_breach: int = 0
    seed: int | None = None


@dataclass(frozen=True)
class SeedVaultConfig:
    vault_id: str = ""
    collateral_asset: str = ""
    collateral_amount: str = "0"
    debt_asset: str = ""
    debt_amount: str = "0"


@dataclass(frozen=True)
class ExecutionConfig:
    dex: str = "Uniswap V3"
    router: str = "0xE592427A0AEce92De3Edee1F18E0157C05861564"
    executor: str = "0x1111111111111111111111111111111111111111"
    bundler: str = "Morpho Bundler"
    route_via: str = "WETH"
    swap_fee: int = 500
    deadline_seconds: int = 600
    gas_estimate: str = "~350,000"


@dataclass(frozen=True)
class PersistenceConfig:
    events_path: str = "data/rebalances.json"


@dataclass(frozen=True)
class EventBusConfig:
    queue_size: int = 100
    policy: str = "drop_oldest"


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    risk: RiskConfig = field(default_factory=RiskConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    tokens: tuple[TokenMeta, ...] = ()
    seed_vaults: tuple[SeedVaultConfig, ...] = ()
    seed_prices: dict[str, str] = field(default_factory=dict)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    event_bus: EventBusConfig = field(default_factory=EventBusConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    def token_registry(self) -> TokenRegistry:
        return TokenRegistry(self.tokens)

    def build_seed_vaults(self) -> tuple[Vault, ...]:
        """Seed vaults with human amounts converted to base units."""
        registry = self.token_registry()
        return tuple(
            Vault(
                vault_id=v.vault_id,
                collateral=Position(
                    v.collateral_asset,
                    to_base(to_wad(v.collateral_amount), registry.decimals_of(v.collateral_asset)),
                ),
                debt=Position(
                    v.debt_asset,
                    to_base(to_wad(v.debt_amount), registry.decimals_of(v.debt_asset)),
                ),
            )
            for v in self.seed_vaults
        )

    def build_seed_prices(self) -> dict[str, int]:
        return {symbol: to_wad(price) for symbol, price in self.seed_prices.items()}


# ---------------------------------------------------------------------------
# Built-in scenario
# ---------------------------------------------------------------------------

DEFAULT_TOKENS: tuple[TokenMeta, ...] = (
    TokenMeta("wstETH", 18, "Wrapped Liquid Staked Ether", "0xc1cba3fcea344f02d92366546156461897602fe4"),
    TokenMeta("weETH", 18, "Wrapped eETH", "0x04c0599ae5a44309205625474389146123841773"),
    TokenMeta("USDC", 6, "USD Coin", "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913", display_decimals=2),
    TokenMeta("WETH", 18, "Wrapped Ether", "0x4200000000000000000000000000000000000006"),
    TokenMeta(
        "bUSDC", 6, "Blend Loan Token: USDC", "0x1234567890123456789012345678901234567890",
        underlying="USDC", display_decimals=2,
    ),
    TokenMeta(
        "bETH", 18, "Blend Loan Token: ETH", "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd",
        underlying="WETH",
    ),
)

DEFAULT_SEED_VAULTS: tuple[SeedVaultConfig, ...] = (
    SeedVaultConfig("VAULT-A-WSTETH-BUSDC", "wstETH", "10", "bUSDC", "15000"),
    SeedVaultConfig("VAULT-B-WEETH-BETH", "weETH", "5", "bETH", "5"),
)

DEFAULT_SEED_PRICES: dict[str, str] = {
    "wstETH": "3500",
    "weETH": "3600",
    "USDC": "1",
    "WETH": "3550",
}


def default_config() -> AppConfig:
    """The built-in two-vault crash scenario."""
    cfg = AppConfig(
        tokens=DEFAULT_TOKENS,
        seed_vaults=DEFAULT_SEED_VAULTS,
        seed_prices=dict(DEFAULT_SEED_PRICES),
    )
    _validate(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_risk(raw: dict[str, Any]) -> RiskConfig:
    return RiskConfig(
        liquidation_threshold=float(raw.get("liquidation_threshold", 0.85)),
        trigger_hf=float(raw.get("trigger_hf", 1.15)),
        target_hf=float(raw.get("target_hf", 1.25)),
        slippage_bps=int(raw.get("slippage_bps", 50)),
    )


def _build_simulation(raw: dict[str, Any]) -> SimulationConfig:
    seed = raw.get("seed")
    return SimulationConfig(
        tick_delay_min_ms=int(raw.get("tick_delay_min_ms", 2000)),
        tick_delay_max_ms=int(raw.get("tick_delay_max_ms", 3000)),
        drop_min=float(raw.get("drop_min", 0.05)),
        drop_max=float(raw.get("drop_max", 0.15)),
        volatile_assets=tuple(raw.get("volatile_assets", SimulationConfig.volatile_assets)),
        max_ticks=int(raw.get("max_ticks", 1000)),
        extra_ticks_after_breach=int(raw.get("extra_ticks_after_breach", 0)),
        seed=int(seed) if seed not in (None, "") else None,
    )


def _build_tokens(raw: dict[str, Any]) -> tuple[TokenMeta, ...]:
    tokens: list[TokenMeta] = []
    for symbol, cfg in raw.items():
        tokens.append(
            TokenMeta(
                symbol=symbol,
                decimals=int(cfg.get("decimals", 18)),
                name=cfg.get("name", ""),
                address=cfg.get("address", ""),
                underlying=cfg.get("underlying") or None,
                display_decimals=int(cfg.get("display_decimals", 4)),
            )
        )
    return tuple(tokens)


def _build_seed_vaults(raw: list[dict[str, Any]]) -> tuple[SeedVaultConfig, ...]:
    vaults: list[SeedVaultConfig] = []
    for v in raw:
        collateral = v.get("collateral", {})
        debt = v.get("debt", {})
        vaults.append(
            SeedVaultConfig(
                vault_id=v.get("vault_id", ""),
                collateral_asset=collateral.get("asset", ""),
                collateral_amount=str(collateral.get("amount", "0")),
                debt_asset=debt.get("asset", ""),
                debt_amount=str(debt.get("amount", "0")),
            )
        )
    return tuple(vaults)


def _build_execution(raw: dict[str, Any]) -> ExecutionConfig:
    return ExecutionConfig(
        dex=raw.get("dex", ExecutionConfig.dex),
        router=raw.get("router", ExecutionConfig.router),
        executor=raw.get("executor", ExecutionConfig.executor),
        bundler=raw.get("bundler", ExecutionConfig.bundler),
        route_via=raw.get("route_via", ExecutionConfig.route_via),
        swap_fee=int(raw.get("swap_fee", 500)),
        deadline_seconds=int(raw.get("deadline_seconds", 600)),
        gas_estimate=raw.get("gas_estimate", ExecutionConfig.gas_estimate),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=tg.get("chat_id", ""),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    persistence_raw = raw.get("persistence", {})
    bus_raw = raw.get("event_bus", {})
    cfg = AppConfig(
        risk=_build_risk(raw.get("risk", {})),
        simulation=_build_simulation(raw.get("simulation", {})),
        tokens=_build_tokens(raw.get("tokens", {})),
        seed_vaults=_build_seed_vaults(raw.get("vaults", [])),
        seed_prices={k: str(v) for k, v in raw.get("prices", {}).items()},
        execution=_build_execution(raw.get("execution", {})),
        persistence=PersistenceConfig(
            events_path=persistence_raw.get("events_path", PersistenceConfig.events_path),
        ),
        event_bus=EventBusConfig(
            queue_size=int(bus_raw.get("queue_size", 100)),
            policy=bus_raw.get("policy", "drop_oldest"),
        ),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.seed_vaults:
        raise ValueError("At least one vault must be configured")

    registry = cfg.token_registry()
    for symbol, price in cfg.seed_prices.items():
        if to_wad(price) <= 0:
            raise ValueError(f"Price for '{symbol}' must be positive")

    for vault in cfg.seed_vaults:
        if not vault.vault_id:
            raise ValueError("Vault has no vault_id")
        for asset in (vault.collateral_asset, vault.debt_asset):
            if asset not in registry:
                raise ValueError(f"Vault '{vault.vault_id}' references unknown token '{asset}'")
            price_symbol = registry.underlying_price_symbol(asset)
            if price_symbol not in cfg.seed_prices:
                raise ValueError(
                    f"Vault '{vault.vault_id}' has no seed price for '{price_symbol}'"
                )
        if vault.collateral_asset == vault.debt_asset:
            raise ValueError(f"Vault '{vault.vault_id}' uses the same asset for collateral and debt")

    for token in cfg.tokens:
        if token.underlying and token.underlying not in registry:
            raise ValueError(f"Token '{token.symbol}' has unknown underlying '{token.underlying}'")

    for symbol in cfg.simulation.volatile_assets:
        if symbol not in cfg.seed_prices:
            raise ValueError(f"Volatile asset '{symbol}' has no seed price")

    if not 0 <= cfg.simulation.drop_min <= cfg.simulation.drop_max < 1:
        raise ValueError("Price drop range must satisfy 0 <= drop_min <= drop_max < 1")
    if cfg.simulation.tick_delay_min_ms > cfg.simulation.tick_delay_max_ms:
        raise ValueError("tick_delay_min_ms must not exceed tick_delay_max_ms")

    if cfg.risk.trigger_hf >= cfg.risk.target_hf:
        raise ValueError("trigger_hf must be below target_hf")
    if not 0 <= cfg.risk.slippage_bps < BPS_DENOMINATOR:
        raise ValueError("slippage_bps must be in [0, 10000)")

    if cfg.event_bus.policy not in ("drop_oldest", "block"):
        raise ValueError(f"Unknown event bus policy '{cfg.event_bus.policy}'")
