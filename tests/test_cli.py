"""Tests for the operator CLI."""

from typing import Any
from unittest.mock import patch

from typer.testing import CliRunner

from ugc_engine.cli import app
from ugc_engine.services.credits import CreditLedger

runner = CliRunner()


class TestCreditCommands:
    """Tests for the credits subcommands."""

    def test_grant_then_balance(self, ledger: CreditLedger, make_user: Any) -> None:
        """A keyed grant applies once and shows in the balance."""
        user_id = str(make_user(credits=2))

        with patch("ugc_engine.services.credits.CreditLedger", return_value=ledger):
            first = runner.invoke(
                app, ["credits", "grant", user_id, "--amount", "5", "--key", "support-1"]
            )
            second = runner.invoke(
                app, ["credits", "grant", user_id, "--amount", "5", "--key", "support-1"]
            )
            balance = runner.invoke(app, ["credits", "balance", user_id])

        assert first.exit_code == 0
        assert "Granted 5 credits" in first.output
        assert "nothing changed" in second.output
        assert "Balance: 7" in balance.output

    def test_unknown_transaction_type(self, make_user: Any) -> None:
        """An unknown ledger type exits non-zero."""
        result = runner.invoke(
            app, ["credits", "grant", str(make_user()), "--amount", "1", "--type", "GIFT"]
        )

        assert result.exit_code == 1
        assert "Unknown transaction type" in result.output

    def test_invalid_user_id(self) -> None:
        """A malformed id exits non-zero."""
        result = runner.invoke(app, ["credits", "balance", "not-a-uuid"])

        assert result.exit_code == 1
        assert "Invalid user ID" in result.output

    def test_audit(self, ledger: CreditLedger, make_user: Any) -> None:
        """A fresh user's ledger is consistent."""
        user_id = str(make_user(credits=3))

        with patch("ugc_engine.services.credits.CreditLedger", return_value=ledger):
            result = runner.invoke(app, ["credits", "audit", user_id])

        assert result.exit_code == 0
        assert "consistent" in result.output


def test_version() -> None:
    """The version flag prints and exits."""
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert "UGC Video Engine" in result.output
