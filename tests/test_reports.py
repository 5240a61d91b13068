from rebalancex.config import default_chains
from rebalancex.errors import ErrorKind
from rebalancex.exec import CycleResult, TransferOutcome, TransferStage
from rebalancex.portfolio import ChainBalance, Deviation, RebalanceAction, TargetAllocation
from rebalancex.reports import build_allocation_report, build_outcome_report

USDC = 10**6
CHAINS = default_chains()


def _result():
    balances = [
        ChainBalance("sepolia", 60 * USDC, 60.0),
        ChainBalance("polygonAmoy", 20 * USDC, 20.0),
        ChainBalance("arbitrumSepolia", 20 * USDC, 20.0),
    ]
    targets = [
        TargetAllocation("sepolia", 40),
        TargetAllocation("polygonAmoy", 30),
        TargetAllocation("arbitrumSepolia", 30),
    ]
    deviations = [
        Deviation("sepolia", 60.0, 40, 20.0),
        Deviation("polygonAmoy", 20.0, 30, -10.0),
        Deviation("arbitrumSepolia", 20.0, 30, -10.0),
    ]
    actions = [
        RebalanceAction(CHAINS["sepolia"], CHAINS["polygonAmoy"], 10 * USDC),
        RebalanceAction(CHAINS["sepolia"], CHAINS["arbitrumSepolia"], 10 * USDC),
    ]
    outcomes = [
        TransferOutcome(success=True, stage=TransferStage.COMPLETE, burn_tx="0xb1", mint_tx="0xm1", message_id="0x1"),
        TransferOutcome(
            success=False,
            stage=TransferStage.FAILED,
            failed_stage=TransferStage.AWAITING_ATTESTATION,
            burn_tx="0xb2",
            message_id="0x2",
            error="attestation not ready",
            error_kind=ErrorKind.ATTESTATION_TIMEOUT,
        ),
    ]
    return CycleResult(balances, targets, deviations, 5, actions, outcomes)


def test_allocation_report_flags_chains_over_threshold():
    df = build_allocation_report(_result())
    assert list(df["chain"]) == ["sepolia", "polygonAmoy", "arbitrumSepolia"]
    assert list(df["balance_usdc"]) == ["60.00", "20.00", "20.00"]
    assert list(df["status"]) == ["rebalance", "rebalance", "rebalance"]
    assert df.loc[0, "deviation_pct"] == 20.0


def test_outcome_report_shows_failed_step():
    df = build_outcome_report(_result())
    assert list(df["stage"]) == ["complete", "awaiting_attestation"]
    assert list(df["success"]) == [True, False]
    assert df.loc[1, "burn_tx"] == "0xb2"
    assert df.loc[1, "mint_tx"] is None


def test_empty_outcome_report_keeps_columns():
    result = _result()
    result.actions, result.outcomes = [], []
    df = build_outcome_report(result)
    assert df.empty
    assert "burn_tx" in df.columns
