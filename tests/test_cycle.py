from __future__ import annotations

import threading

import pytest

from rebalancex.config import BalanceFailurePolicy, default_chains, load_config
from rebalancex.data import StaticBalanceSource
from rebalancex.errors import BalanceReadError, ConfigurationError, ErrorKind
from rebalancex.exec import RebalanceCycle, RebalanceLoop, TransferOutcome, TransferStage, build_cycle
from rebalancex.portfolio import parse_target_allocation

USDC = 10**6
CHAINS = default_chains()
ORDER = [CHAINS["sepolia"], CHAINS["polygonAmoy"], CHAINS["arbitrumSepolia"]]


class RecordingPipeline:
    def __init__(self, fail_first=False):
        self.actions = []
        self.fail_first = fail_first

    def execute(self, action):
        self.actions.append(action)
        if self.fail_first and len(self.actions) == 1:
            return TransferOutcome(
                success=False,
                stage=TransferStage.FAILED,
                failed_stage=TransferStage.BURNING,
                error="insufficient funds",
                error_kind=ErrorKind.REJECTED,
            )
        return TransferOutcome(success=True, stage=TransferStage.COMPLETE, burn_tx="0xb", mint_tx="0xm")


def make_cycle(balances, target="40,30,30", pipeline=None, threshold=5):
    return RebalanceCycle(
        ORDER,
        parse_target_allocation(target, ORDER),
        threshold,
        StaticBalanceSource(balances),
        pipeline or RecordingPipeline(),
        address="0x" + "ab" * 20,
    )


def test_balanced_cycle_takes_no_action():
    pipeline = RecordingPipeline()
    cycle = make_cycle({"sepolia": 42 * USDC, "polygonAmoy": 28 * USDC, "arbitrumSepolia": 30 * USDC}, pipeline=pipeline)
    result = cycle.run()

    assert not result.needs_rebalancing
    assert result.actions == []
    assert not result.rebalanced
    assert not result.failed
    assert pipeline.actions == []
    assert [round(b.percentage, 2) for b in result.balances] == [42.0, 28.0, 30.0]


def test_cycle_executes_actions_in_plan_order():
    pipeline = RecordingPipeline()
    cycle = make_cycle({"sepolia": 60 * USDC, "polygonAmoy": 20 * USDC, "arbitrumSepolia": 20 * USDC}, pipeline=pipeline)
    result = cycle.run()

    assert [(a.source.name, a.destination.name) for a in pipeline.actions] == [
        ("sepolia", "polygonAmoy"),
        ("sepolia", "arbitrumSepolia"),
    ]
    assert result.total == 100 * USDC
    assert len(result.outcomes) == 2
    assert result.rebalanced
    assert not result.failed


def test_failed_action_does_not_stop_the_cycle():
    pipeline = RecordingPipeline(fail_first=True)
    cycle = make_cycle({"sepolia": 60 * USDC, "polygonAmoy": 20 * USDC, "arbitrumSepolia": 20 * USDC}, pipeline=pipeline)
    result = cycle.run()

    assert len(pipeline.actions) == 2
    assert [o.success for o in result.outcomes] == [False, True]
    assert result.failed


def test_evaluate_plans_without_executing():
    pipeline = RecordingPipeline()
    cycle = make_cycle({"sepolia": 70 * USDC, "polygonAmoy": 30 * USDC, "arbitrumSepolia": 0}, pipeline=pipeline)
    result = cycle.evaluate()
    assert result.actions
    assert result.outcomes == []
    assert pipeline.actions == []


def test_balance_read_failure_aborts_by_default():
    cycle = make_cycle({"sepolia": 60 * USDC, "polygonAmoy": 20 * USDC})
    with pytest.raises(BalanceReadError):
        cycle.run()


def test_zero_policy_keeps_going():
    cycle = make_cycle({"sepolia": 60 * USDC, "polygonAmoy": 40 * USDC})
    cycle.failure_policy = BalanceFailurePolicy.ZERO
    result = cycle.run()
    assert result.balances[2].amount == 0
    assert result.needs_rebalancing


def static_config(**rebalance):
    return load_config(
        {
            "wallet": {"address": "0x" + "ab" * 20},
            "balances": {
                "provider": "static",
                "static": {"sepolia": 70 * USDC, "polygonAmoy": 30 * USDC},
            },
            "rebalance": {"chains": ["sepolia", "polygonAmoy"], "target": "50,50", **rebalance},
        }
    )


def test_build_cycle_dry_run_needs_no_key(monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    cycle = build_cycle(static_config(dry_run=True))
    result = cycle.run()

    assert [(a.source.name, a.destination.name, a.amount) for a in result.actions] == [
        ("sepolia", "polygonAmoy", 20 * USDC)
    ]
    assert all(o.dry_run and o.success for o in result.outcomes)


def test_build_cycle_requires_key_for_live_transfers(monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="PRIVATE_KEY"):
        build_cycle(static_config())
    assert build_cycle(static_config(), execute=False).evaluate().actions


def test_build_cycle_validates_targets_before_running():
    with pytest.raises(ConfigurationError, match="value count mismatch"):
        build_cycle(static_config(target="40,30,30", dry_run=True))


def test_build_cycle_rejects_unknown_chain():
    config = static_config(dry_run=True, chains=["sepolia", "solanaDevnet"])
    with pytest.raises(ConfigurationError, match="Unknown chain"):
        build_cycle(config)


class ScriptedCycle:
    def __init__(self, steps):
        self.steps = list(steps)
        self.runs = 0

    def run(self):
        self.runs += 1
        step = self.steps.pop(0)
        return step()


def test_loop_once_runs_single_cycle():
    cycle = ScriptedCycle([lambda: "result"])
    loop = RebalanceLoop(cycle, interval_seconds=0, once=True)
    assert loop.run() == "result"
    assert cycle.runs == 1


def test_loop_stops_between_cycles():
    stop = threading.Event()

    def stop_mid_cycle():
        stop.set()
        return "finished"

    cycle = ScriptedCycle([lambda: "first", stop_mid_cycle, lambda: "never"])
    loop = RebalanceLoop(cycle, interval_seconds=0, stop_event=stop)

    assert loop.run() == "finished"
    assert cycle.runs == 2


def test_loop_survives_cycle_failure(caplog):
    stop = threading.Event()

    def boom():
        raise BalanceReadError("sepolia", ConnectionError("down"))

    def then_stop():
        stop.set()
        return "recovered"

    loop = RebalanceLoop(ScriptedCycle([boom, then_stop]), interval_seconds=0, stop_event=stop)
    assert loop.run() == "recovered"
    assert loop.cycles_run == 2
    assert "cycle 1 failed" in caplog.text


def test_request_stop_sets_event():
    loop = RebalanceLoop(ScriptedCycle([]), interval_seconds=0)
    loop.request_stop()
    assert loop.run() is None
