"""Command-line interface for the vault rebalancer."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import enum
import json
import math
import sys
from typing import Any, Mapping

from .config import AppConfig, load_config
from .errors import RebalancerError
from .logging_setup import configure_logging
from .services import SimulationOrchestrator


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="vault-rebalancer",
        description="Crash-simulate lending vaults and plan collateral rebalances",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    simulate = sub.add_parser("simulate", help="Run one crash simulation until a breach")
    simulate.add_argument(
        "--extra-ticks",
        type=int,
        default=None,
        help="Ticks to keep running after the first breach (overrides config)",
    )
    simulate.add_argument(
        "--tick-delay-ms",
        type=int,
        default=None,
        help="Fixed delay between ticks instead of the configured random window",
    )
    simulate.add_argument(
        "--force-symbol",
        default=None,
        help="Always crash this asset instead of a random volatile one",
    )
    simulate.add_argument("--seed", type=int, default=None, help="Random seed (overrides config)")

    sub.add_parser("health", help="Health report at seed prices")
    sub.add_parser("vaults", help="List seed vaults")

    plan = sub.add_parser("plan", help="Rebalance plan for one vault at seed prices")
    plan.add_argument("vault_id")

    execute = sub.add_parser("execute", help="Apply a rebalance to vault state")
    execute.add_argument(
        "vault_id",
        nargs="?",
        default=None,
        help="Vault to rebalance now; omit to apply the latest recorded plans",
    )

    sub.add_parser("rebalances", help="List recorded rebalance events")

    return parser


def _jsonable(obj: Any) -> Any:
    """Convert results to plain JSON types; infinite HFs become ``null``."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _jsonable(dataclasses.asdict(obj))
    if isinstance(obj, enum.Enum):
        return _jsonable(obj.value)
    if isinstance(obj, Mapping):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if obj is None or isinstance(obj, (str, int)):
        return obj
    return str(obj)


def _to_json(value: Any) -> str:
    return json.dumps(_jsonable(value), indent=2, allow_nan=False)


def _with_seed(config: AppConfig, seed: int | None) -> AppConfig:
    if seed is None:
        return config
    return dataclasses.replace(
        config, simulation=dataclasses.replace(config.simulation, seed=seed)
    )


async def _run(args: argparse.Namespace) -> Any:
    """Execute the selected command and return its JSON-able result."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command == "simulate":
        config = _with_seed(config, args.seed)
        extra = (
            config.simulation.extra_ticks_after_breach
            if args.extra_ticks is None
            else args.extra_ticks
        )
        delay = None if args.tick_delay_ms is None else args.tick_delay_ms / 1000.0
        orchestrator = SimulationOrchestrator(config)
        return await orchestrator.start_run(
            extra_ticks_after_breach=extra,
            tick_delay_override=delay,
            forced_drop_symbol=args.force_symbol,
        )

    orchestrator = SimulationOrchestrator(config)
    if args.command == "health":
        return orchestrator.health_report()
    if args.command == "vaults":
        return orchestrator.current_vaults()
    if args.command == "plan":
        return orchestrator.build_plan(args.vault_id)
    if args.command == "execute":
        if args.vault_id:
            return await orchestrator.execute_plan(args.vault_id)
        return await orchestrator.execute_latest_plans()
    if args.command == "rebalances":
        return await orchestrator.list_rebalances()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        result = asyncio.run(_run(args))
    except (RebalancerError, ValueError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
    print(_to_json(result))


if __name__ == "__main__":
    main()
