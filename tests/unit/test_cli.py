"""Unit tests for CLI argument parsing and output."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from vault_rebalancer.cli import _to_json, _with_seed, build_parser, main
from vault_rebalancer.config import RiskConfig, default_config
from vault_rebalancer.models import PriceMap, Vault
from vault_rebalancer.services.rebalance_engine import generate_execution_plan
from vault_rebalancer.services.simulation import RunState
from vault_rebalancer.tokens import TokenRegistry
from vault_rebalancer.wad import WAD


class TestBuildParser:
    def test_simulate_defaults(self) -> None:
        args = build_parser().parse_args(["simulate"])
        assert args.command == "simulate"
        assert args.extra_ticks is None
        assert args.tick_delay_ms is None
        assert args.force_symbol is None
        assert args.seed is None

    def test_simulate_options(self) -> None:
        args = build_parser().parse_args(
            ["simulate", "--extra-ticks", "3", "--tick-delay-ms", "0", "--force-symbol", "weETH", "--seed", "9"]
        )
        assert args.extra_ticks == 3
        assert args.tick_delay_ms == 0
        assert args.force_symbol == "weETH"
        assert args.seed == 9

    def test_plan_requires_vault_id(self) -> None:
        parser = build_parser()
        assert parser.parse_args(["plan", "VAULT-B"]).vault_id == "VAULT-B"
        with pytest.raises(SystemExit):
            parser.parse_args(["plan"])

    def test_execute_vault_id_optional(self) -> None:
        parser = build_parser()
        assert parser.parse_args(["execute"]).vault_id is None
        assert parser.parse_args(["execute", "VAULT-A"]).vault_id == "VAULT-A"

    @pytest.mark.parametrize("command", ["health", "vaults", "rebalances"])
    def test_simple_commands(self, command: str) -> None:
        assert build_parser().parse_args([command]).command == command

    def test_config_flag(self) -> None:
        args = build_parser().parse_args(["--config", "/tmp/c.yaml", "health"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "health"])
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        assert build_parser().parse_args([]).command is None


class TestWithSeed:
    def test_overrides_seed(self) -> None:
        assert _with_seed(default_config(), 5).simulation.seed == 5

    def test_none_keeps_config(self) -> None:
        cfg = default_config()
        assert _with_seed(cfg, None) is cfg


class TestToJson:
    def test_full_repay_plan_is_strict_json(
        self, vault_a: Vault, seed_prices: PriceMap, registry: TokenRegistry
    ) -> None:
        prices = {**seed_prices, "wstETH": 2000 * WAD}
        plan = generate_execution_plan(vault_a, prices, registry, RiskConfig(), target_hf=0.5)
        assert plan.projected_outcome.estimated_health_factor == float("inf")

        payload = json.loads(_to_json(plan), parse_constant=pytest.fail)

        assert payload["projected_outcome"]["estimated_health_factor"] is None
        assert payload["projected_outcome"]["new_debt_base"] == 0
        assert "Infinity" not in _to_json(plan)

    def test_non_finite_floats_become_null(self) -> None:
        payload = json.loads(_to_json({"hf": float("inf"), "rows": [float("nan"), 1.5]}))
        assert payload == {"hf": None, "rows": [None, 1.5]}

    def test_enums_and_tuples(self) -> None:
        assert json.loads(_to_json({"state": RunState.IDLE, "pair": (1, "a")})) == {
            "state": RunState.IDLE.value,
            "pair": [1, "a"],
        }


class TestMain:
    def test_no_command_exits(self) -> None:
        with pytest.raises(SystemExit):
            main([])

    def test_health_prints_json(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["--config", str(sample_yaml_path), "--log-level", "ERROR", "health"])
        report = json.loads(capsys.readouterr().out)
        assert report["summary"]["total"] == 1
        assert report["vaults"][0]["vault_id"] == "test-vault"

    def test_unknown_vault_exits_with_error(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(sample_yaml_path), "--log-level", "ERROR", "plan", "missing"])
        assert exc.value.code == 2
        assert "missing" in capsys.readouterr().err
