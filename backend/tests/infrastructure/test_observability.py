"""Structured logging — JSON records carry the trade correlation fields."""

import json
import logging

from merchant.infrastructure.observability import JSONFormatter


def _record(**extra):
    record = logging.LogRecord(
        "merchant.services.deposit_workflow", logging.INFO, __file__, 1,
        "Deposit offer sent", None, None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_record_includes_extra_fields():
    line = JSONFormatter().format(_record(trade_id=7, trade_kind="deposit", offer_id="5001"))
    data = json.loads(line)

    assert data["message"] == "Deposit offer sent"
    assert data["level"] == "INFO"
    assert data["trade_id"] == 7
    assert data["trade_kind"] == "deposit"
    assert data["offer_id"] == "5001"


def test_json_record_omits_absent_fields():
    data = json.loads(JSONFormatter().format(_record()))

    assert "trade_id" not in data
    assert "exception" not in data
