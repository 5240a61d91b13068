import json
import subprocess
import sys

import pytest

from rebalancex import cli

USDC = 10**6


def _write_config(path, balances, target="40,30,30", chains=("sepolia", "polygonAmoy", "arbitrumSepolia")):
    static = "\n".join(f"    {name}: {amount}" for name, amount in balances.items())
    path.write_text(
        f"""
wallet:
  address: "0x{'ab' * 20}"
balances:
  provider: static
  static:
{static}
rebalance:
  target: "{target}"
  chains: [{', '.join(chains)}]
  threshold_pct: 5
"""
    )
    return path


@pytest.fixture
def quiet_cli(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda config: None)
    monkeypatch.setattr(cli.RebalanceLoop, "install_signal_handlers", lambda self: None)
    monkeypatch.delenv("PRIVATE_KEY", raising=False)


def test_cli_plan(tmp_path):
    config = _write_config(
        tmp_path / "config.yml", {"sepolia": 60 * USDC, "polygonAmoy": 20 * USDC, "arbitrumSepolia": 20 * USDC}
    )

    result = subprocess.run(
        [sys.executable, "-m", "rebalancex.cli", "plan", "--config", str(config)],
        check=True,
        capture_output=True,
        text=True,
    )
    payload = json.loads(result.stdout.strip())
    assert payload["total"] == 100 * USDC
    assert payload["needs_rebalancing"] is True
    assert payload["actions"] == [
        {"source": "sepolia", "destination": "polygonAmoy", "amount": 10 * USDC},
        {"source": "sepolia", "destination": "arbitrumSepolia", "amount": 10 * USDC},
    ]


def test_cli_run_once_dry_run(tmp_path, capsys, quiet_cli):
    config = _write_config(
        tmp_path / "config.yml", {"sepolia": 70 * USDC, "polygonAmoy": 30 * USDC, "arbitrumSepolia": 0}
    )
    report = tmp_path / "outcomes.csv"

    cli.main(["run", "--config", str(config), "--once", "--dry-run", "--report", str(report)])

    out = capsys.readouterr().out
    assert "sepolia" in out
    assert "rebalance" in out
    assert report.exists()
    assert "complete" in report.read_text()


def test_cli_overrides_target_from_command_line(tmp_path, capsys, quiet_cli):
    config = _write_config(
        tmp_path / "config.yml", {"sepolia": 50 * USDC, "polygonAmoy": 50 * USDC}, chains=("sepolia", "polygonAmoy")
    )
    cli.main(["plan", "--config", str(config), "--target", "50,50"])
    payload = json.loads(capsys.readouterr().out)
    assert payload["needs_rebalancing"] is False
    assert payload["actions"] == []


def test_cli_reports_configuration_errors(tmp_path, quiet_cli):
    config = _write_config(
        tmp_path / "config.yml", {"sepolia": 60 * USDC, "polygonAmoy": 20 * USDC, "arbitrumSepolia": 20 * USDC}
    )
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["plan", "--config", str(config), "--target", "40,30"])
    assert "value count mismatch" in str(excinfo.value.code)


def test_cli_balances_writes_csv(tmp_path, capsys, quiet_cli):
    config = _write_config(
        tmp_path / "config.yml", {"sepolia": 40 * USDC, "polygonAmoy": 30 * USDC, "arbitrumSepolia": 30 * USDC}
    )
    output = tmp_path / "balances.csv"
    cli.main(["balances", "--config", str(config), "--output", str(output)])

    lines = output.read_text().splitlines()
    assert lines[0] == "chain,balance_usdc,current_pct,target_pct,deviation_pct,status"
    assert len(lines) == 4
    assert "Saved report" in capsys.readouterr().out


def test_cli_mint_requires_payload(tmp_path, monkeypatch, quiet_cli):
    monkeypatch.setenv("PRIVATE_KEY", "0x" + "11" * 32)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["mint", "--chain", "polygonAmoy", "--message", "0x01"])
    assert "--message-id" in str(excinfo.value.code)


def test_cli_rejects_invalid_option_values(quiet_cli):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["plan", "--threshold", "-1"])
    assert str(excinfo.value.code).startswith("error: Invalid command line option")
    assert "threshold_pct" in str(excinfo.value.code)


def test_cli_reports_invalid_config_file(tmp_path, quiet_cli):
    config = tmp_path / "config.yml"
    config.write_text("rebalance:\n  interval_seconds: 0\n")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["plan", "--config", str(config)])
    assert "interval_seconds" in str(excinfo.value.code)
