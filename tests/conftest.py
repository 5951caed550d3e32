"""Shared test fixtures and sample data."""
from __future__ import annotations

import random
import textwrap
from pathlib import Path

import pytest

from vault_rebalancer.config import AppConfig, default_config
from vault_rebalancer.models import PriceMap, Vault
from vault_rebalancer.persistence import InMemoryEventStore
from vault_rebalancer.services.simulation import SimulationOrchestrator
from vault_rebalancer.services.vault_store import VaultStore
from vault_rebalancer.tokens import TokenRegistry

VAULT_A = "VAULT-A-WSTETH-BUSDC"
VAULT_B = "VAULT-B-WEETH-BETH"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def app_config() -> AppConfig:
    return default_config()


@pytest.fixture()
def registry(app_config: AppConfig) -> TokenRegistry:
    return app_config.token_registry()


@pytest.fixture()
def seed_prices(app_config: AppConfig) -> PriceMap:
    return app_config.build_seed_prices()


@pytest.fixture()
def seed_vaults(app_config: AppConfig) -> dict[str, Vault]:
    return {v.vault_id: v for v in app_config.build_seed_vaults()}


@pytest.fixture()
def vault_a(seed_vaults: dict[str, Vault]) -> Vault:
    return seed_vaults[VAULT_A]


@pytest.fixture()
def vault_b(seed_vaults: dict[str, Vault]) -> Vault:
    return seed_vaults[VAULT_B]


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def vault_store(app_config: AppConfig) -> VaultStore:
    return VaultStore(app_config.build_seed_vaults(), app_config.build_seed_prices())


@pytest.fixture()
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture()
def orchestrator(app_config: AppConfig, event_store: InMemoryEventStore) -> SimulationOrchestrator:
    return SimulationOrchestrator(
        app_config,
        event_store=event_store,
        notifiers=[],
        rng=random.Random(0),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    risk:
      liquidation_threshold: 0.8
      trigger_hf: 1.1
      target_hf: 1.3
      slippage_bps: 30
    simulation:
      tick_delay_min_ms: 10
      tick_delay_max_ms: 20
      volatile_assets: [wstETH]
      max_ticks: 50
      seed: 7
    tokens:
      wstETH:
        decimals: 18
        address: "0xaaa"
      USDC:
        decimals: 6
        display_decimals: 2
      bUSDC:
        decimals: 6
        underlying: USDC
        display_decimals: 2
    prices:
      wstETH: "3000"
      USDC: "1"
    vaults:
      - vault_id: test-vault
        collateral: {asset: wstETH, amount: "2"}
        debt: {asset: bUSDC, amount: "1000"}
    persistence:
      events_path: data/test-events.json
    event_bus:
      queue_size: 8
      policy: block
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
