"""
Integration tests for the command line interface.

Each invocation opens the SQLite store in a temporary data directory, so
consecutive commands exercise persistence as well.
"""

import pytest
from click.testing import CliRunner

from chitfund.cli.main import cli
from chitfund.utils.logger import ChitFundLogger


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_logging():
    """The CLI binds log output to the runner's stream; drop it afterwards."""
    yield
    ChitFundLogger.reset()


@pytest.fixture
def run(tmp_path):
    """Invoke the CLI against a temporary data directory."""
    runner = CliRunner()

    def invoke(*args):
        return runner.invoke(cli, ["--data-dir", str(tmp_path), *args])

    return invoke


@pytest.fixture
def fund(run):
    """An active three-member fund."""
    assert run(
        "group", "create", "g1", "--name", "Office Fund", "--pool", "30000",
        "--capacity", "3", "--commission", "1500", "--contribution", "10000",
    ).exit_code == 0
    for member_id, name in [("m1", "Asha"), ("m2", "Ravi"), ("m3", "Meera")]:
        assert run("group", "add-member", "g1", member_id, "--name", name).exit_code == 0
    assert run("group", "activate", "g1").exit_code == 0
    return run


# =============================================================================
# Tests
# =============================================================================


class TestGroupCommands:

    def test_create_and_show(self, fund):
        result = fund("group", "show", "g1")

        assert result.exit_code == 0
        assert "Office Fund" in result.output
        assert "Active" in result.output
        assert "m3: Meera" in result.output

    def test_unknown_group(self, run):
        result = run("group", "show", "nope")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_duplicate_member(self, fund):
        result = fund("group", "add-member", "g1", "m1", "--name", "Again")

        assert result.exit_code == 1
        assert "duplicate_member" in result.output


class TestAuctionFlow:
    """Schedule, bid, close and pay through separate invocations."""

    def test_full_period(self, fund):
        assert fund("auction", "schedule", "g1", "1", "--id", "a1",
                    "--at", "2024-01-01").exit_code == 0
        assert fund("auction", "start", "a1").exit_code == 0
        assert fund("auction", "bid", "a1", "m1", "3500").exit_code == 0
        assert fund("auction", "bid", "a1", "m2", "2500",
                    "--admin", "admin").exit_code == 0

        closed = fund("auction", "close", "a1")
        assert closed.exit_code == 0
        assert "winner m1" in closed.output
        assert "Dividend per member: 1000" in closed.output

        shown = fund("auction", "show", "a1")
        assert "Closed" in shown.output
        assert "(proxy)" in shown.output

        paid = fund("payment", "record", "g1", "m2", "1", "9000", "--method", "UPI")
        assert paid.exit_code == 0
        assert "Paid" in paid.output

        listed = fund("payment", "list", "g1", "--period", "1")
        assert "m1 (winner): due 10000" in listed.output
        assert "m2: due 9000 paid 9000" in listed.output

        ranked = fund("ranking", "recalc", "g1")
        assert ranked.exit_code == 0
        assert "1. Ravi (m2)" in ranked.output

    def test_bid_errors_are_reported(self, fund):
        fund("auction", "schedule", "g1", "1", "--id", "a1")

        result = fund("auction", "bid", "a1", "m1", "3500")

        assert result.exit_code == 1
        assert "not live" in result.output

    def test_exclude_requires_reason(self, fund):
        fund("auction", "schedule", "g1", "1", "--id", "a1")

        assert fund("auction", "exclude", "a1", "m3").exit_code == 2
        assert fund("auction", "exclude", "a1", "m3", "--reason", "dues").exit_code == 0
        assert fund("auction", "exclude", "a1", "m3", "--revert").exit_code == 0

    def test_extend_grace(self, fund):
        fund("auction", "schedule", "g1", "1", "--id", "a1")
        fund("auction", "start", "a1")
        fund("auction", "bid", "a1", "m1", "3500")
        fund("auction", "close", "a1")

        result = fund("payment", "extend-grace", "g1", "m2", "1", "4", "--reason", "travel")

        assert result.exit_code == 0
        assert "Grace period now 7 days" in result.output

    def test_statement(self, fund):
        fund("auction", "schedule", "g1", "1", "--id", "a1")
        fund("auction", "start", "a1")
        fund("auction", "bid", "a1", "m1", "3500")
        fund("auction", "close", "a1")
        fund("payment", "record", "g1", "m2", "1", "9000", "--method", "UPI")

        payer = fund("payment", "statement", "g1", "m2")
        assert payer.exit_code == 0
        assert "Statement: Ravi (m2) in Office Fund" in payer.output
        assert "Dividend" in payer.output
        assert "Contribution" in payer.output
        assert "Contributions: 9000  Dividends: 1000  Net: 8000" in payer.output

        winner = fund("payment", "statement", "g1", "m1")
        assert "Won period 1 with bid 3500, received 25000" in winner.output

        assert fund("payment", "statement", "g1", "m9").exit_code == 1


def test_demo():
    result = CliRunner().invoke(cli, ["demo"])

    assert result.exit_code == 0
    assert "Winner: m02" in result.output
    assert "Dividend per member: 1111" in result.output
    assert "Demo complete" in result.output


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert "0.1.0" in result.output
