"""End-to-end tests for the Typer CLI."""

import logging

import pytest
from typer.testing import CliRunner

from housesplit.cli import app, setup_logging
from housesplit.db import Database

runner = CliRunner()


@pytest.fixture(autouse=True)
def database_path(tmp_path, monkeypatch):
    """Point the CLI at a temporary database."""
    path = tmp_path / "cli.db"
    monkeypatch.setenv("HOUSESPLIT_DATABASE_PATH", str(path))
    return path


def invoke(*args):
    return runner.invoke(app, list(args))


def test_expense_and_balances():
    assert invoke("add-member", "alice").exit_code == 0
    assert invoke("add-member", "bob").exit_code == 0

    result = invoke(
        "add-expense", "Dinner", "100", "--payer", "alice",
        "--split", "alice", "--split", "bob", "--date", "2024-01-05",
    )
    assert result.exit_code == 0
    assert "50.00" in result.output

    result = invoke("balances")
    assert result.exit_code == 0
    assert "Who Owes Who" in result.output
    assert "bob" in result.output


def test_payment_to_self_fails():
    invoke("add-member", "alice")

    result = invoke("pay", "alice", "alice", "10")

    assert result.exit_code == 1
    assert "yourself" in result.output


def test_process_due_creates_occurrence():
    invoke("add-member", "alice")
    invoke("add-member", "bob")
    invoke(
        "recurring-add", "Internet", "80", "--payer", "alice",
        "--frequency", "monthly", "--start", "2024-01-01",
    )

    result = invoke("process-due", "--date", "2024-01-10")

    assert result.exit_code == 0
    assert "Processed 1 recurring expenses" in result.output

    result = invoke("process-due", "--date", "2024-01-10")
    assert "Processed 0 recurring expenses" in result.output


def test_preview_shows_charges():
    result = invoke(
        "preview", "--item", "alice:60", "--item", "bob:40", "--tax-percent", "10",
    )

    assert result.exit_code == 0
    assert "110.00" in result.output


def test_edit_expense_resplits(database_path):
    invoke("add-member", "alice")
    invoke("add-member", "bob")
    invoke(
        "add-expense", "Dinner", "100", "--payer", "alice",
        "--split", "alice", "--split", "bob", "--date", "2024-01-05",
    )
    db = Database(database_path)
    try:
        expense_id = db.list_expenses()[0].id
    finally:
        db.close()

    result = invoke("edit-expense", expense_id, "--amount", "80")

    assert result.exit_code == 0
    assert "40.00" in result.output


def test_recurring_edit_unknown_template():
    result = invoke("recurring-edit", "missing", "--description", "Fibre")

    assert result.exit_code == 1
    assert "not found" in result.output


def test_logging_defaults_to_info(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    setup_logging()
    setup_logging(verbose=True)

    assert [call["level"] for call in calls] == [logging.INFO, logging.DEBUG]
