"""Tests for the structlog setup."""

import json
import logging
from decimal import Decimal

import pytest
import structlog

from feesettle.logging import setup_logging, stringify_amounts
from feesettle.money import Money


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_stringify_amounts() -> None:
    event = stringify_amounts(
        None,
        "info",
        {
            "event": "fee_collected",
            "fee_amount": Money.parse("1"),
            "fee_rate": Decimal("0.0010"),
            "retry_count": 2,
        },
    )
    assert event == {
        "event": "fee_collected",
        "fee_amount": "1.0000000",
        "fee_rate": "0.0010",
        "retry_count": 2,
    }


def test_stringify_amounts_never_scientific() -> None:
    event = stringify_amounts(
        None,
        "info",
        {"fee_amount": Money.zero(), "dust": Decimal("1E-7")},
    )
    assert event == {"fee_amount": "0.0000000", "dust": "0.0000001"}


def test_json_output(restore_logging, capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging("DEBUG", "json")
    structlog.get_logger("feesettle.test").info("fee_collected", fee_amount=Money.parse("2.5"))

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "fee_collected"
    assert record["fee_amount"] == "2.5000000"
    assert record["level"] == "info"
    assert record["logger"] == "feesettle.test"


def test_level_applied(restore_logging) -> None:
    setup_logging("warning", "console")
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING
