"""Command line entry points."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from rebalancex.config import AppConfig, LoggingConfig, RebalanceConfig, load_config, load_private_key, resolve_chains
from rebalancex.data import SessionRegistry
from rebalancex.errors import ConfigurationError, RebalanceError
from rebalancex.exec import (
    AttestationClient,
    AttestationPoller,
    GasPolicy,
    PollSchedule,
    RebalanceLoop,
    RetryPolicy,
    TransferPipeline,
    build_cycle,
)
from rebalancex.exec.attestation import Attestation
from rebalancex.reports import build_allocation_report, build_outcome_report

logger = logging.getLogger("rebalancex")


def configure_logging(config: LoggingConfig) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    logging.basicConfig(
        level=config.level.upper(),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def _load(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config) if args.config else AppConfig()
    updates = {}
    if args.target is not None:
        updates["target"] = args.target
    if args.threshold is not None:
        updates["threshold_pct"] = args.threshold
    if args.chains is not None:
        updates["chains"] = [c.strip() for c in args.chains.split(",") if c.strip()]
    if getattr(args, "interval", None) is not None:
        updates["interval_seconds"] = args.interval
    if getattr(args, "dry_run", False):
        updates["dry_run"] = True
    if getattr(args, "once", False):
        updates["once"] = True
    if updates:
        try:
            rebalance = RebalanceConfig.model_validate({**config.rebalance.model_dump(), **updates})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid command line option: {exc}") from exc
        config = config.model_copy(update={"rebalance": rebalance})
    return config


def _run(args: argparse.Namespace) -> None:
    config = _load(args)
    configure_logging(config.logging)
    cycle = build_cycle(config)
    settings = config.rebalance
    logger.info(
        "Rebalancer starting: target=%s threshold=%g%% interval=%gs chains=%s dry_run=%s",
        settings.target,
        settings.threshold_pct,
        settings.interval_seconds,
        ",".join(settings.chains),
        settings.dry_run,
    )
    loop = RebalanceLoop(cycle, settings.interval_seconds, once=settings.once)
    loop.install_signal_handlers()
    result = loop.run()
    if settings.once:
        if result is None:
            raise SystemExit(1)
        print(build_allocation_report(result).to_string(index=False))
        if result.outcomes:
            outcomes = build_outcome_report(result)
            print(outcomes.to_string(index=False))
            if args.report:
                outcomes.to_csv(args.report, index=False)
                print(f"Saved report to {args.report}")
        if result.failed:
            raise SystemExit(1)


def _plan(args: argparse.Namespace) -> None:
    config = _load(args)
    configure_logging(config.logging)
    result = build_cycle(config, execute=False).evaluate()
    payload = {
        "total": result.total,
        "needs_rebalancing": result.needs_rebalancing,
        "allocations": [
            {
                "chain": dev.chain,
                "current_pct": round(dev.current, 2),
                "target_pct": dev.target,
                "deviation_pct": round(dev.deviation, 2),
            }
            for dev in result.deviations
        ],
        "actions": [
            {"source": a.source.name, "destination": a.destination.name, "amount": a.amount}
            for a in result.actions
        ],
    }
    print(json.dumps(payload))


def _balances(args: argparse.Namespace) -> None:
    config = _load(args)
    configure_logging(config.logging)
    result = build_cycle(config, execute=False).evaluate()
    df = build_allocation_report(result)
    if args.output:
        df.to_csv(args.output, index=False)
        print(f"Saved report to {args.output}")
    else:
        print(df.to_string(index=False))


def _mint(args: argparse.Namespace) -> None:
    config = load_config(args.config) if args.config else AppConfig()
    configure_logging(config.logging)
    (chain,) = resolve_chains(config, [args.chain])
    registry = SessionRegistry(private_key=load_private_key(config), receipt_timeout=config.transactions.receipt_timeout)
    poller = AttestationPoller(
        AttestationClient.from_config(config.attestation).get, PollSchedule.from_config(config.attestation)
    )
    pipeline = TransferPipeline(
        registry, poller, retry=RetryPolicy.from_config(config.retry), gas=GasPolicy.from_config(config.gas)
    )
    if args.message_id:
        attestation = poller.wait(args.message_id, args.message)
    elif args.message and args.attestation:
        attestation = Attestation(message=args.message, attestation=args.attestation)
    else:
        raise SystemExit("mint needs --message-id, or both --message and --attestation")
    mint_tx = pipeline.resume_mint(chain, attestation)
    print(json.dumps({"chain": chain.name, "mint_tx": mint_tx}))


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, help="YAML config file")
    parser.add_argument("-t", "--target", help='Target allocation percentages, e.g. "40,30,30"')
    parser.add_argument("-T", "--threshold", type=float, help="Rebalance threshold in percent")
    parser.add_argument("-c", "--chains", help="Comma-separated chain names")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rebalancex", description="Multi-chain USDC treasury rebalancer")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the rebalancing agent")
    _add_common(run_parser)
    run_parser.add_argument("-i", "--interval", type=float, help="Seconds between checks")
    run_parser.add_argument("-d", "--dry-run", action="store_true", help="Log transfers without executing them")
    run_parser.add_argument("-o", "--once", action="store_true", help="Run one cycle and exit")
    run_parser.add_argument("--report", type=Path, help="CSV path for transfer outcomes (with --once)")

    plan_parser = subparsers.add_parser("plan", help="Print deviations and planned transfers as JSON")
    _add_common(plan_parser)

    balances_parser = subparsers.add_parser("balances", help="Show current vs target allocation")
    _add_common(balances_parser)
    balances_parser.add_argument("--output", type=Path, help="Optional CSV output path")

    mint_parser = subparsers.add_parser("mint", help="Complete a burned transfer on the destination chain")
    mint_parser.add_argument("--config", type=Path, help="YAML config file")
    mint_parser.add_argument("--chain", required=True, help="Destination chain name")
    mint_parser.add_argument("--message-id", help="Fetch message and attestation for this id")
    mint_parser.add_argument("--message", help="Message payload (hex)")
    mint_parser.add_argument("--attestation", help="Attestation signature (hex)")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)
    commands = {"run": _run, "plan": _plan, "balances": _balances, "mint": _mint}
    try:
        commands[args.command](args)
    except RebalanceError as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":  # pragma: no cover
    main()
