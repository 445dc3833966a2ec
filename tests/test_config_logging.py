"""
Test suite for configuration loading and structured logging
"""

import json
import logging
from datetime import datetime, timezone

import pytest

from coop_ledger import config as config_module
from coop_ledger.config import LedgerConfig, get_config, reload_config
from coop_ledger.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestConfig:
    """Environment-driven settings"""
    
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("COOP_LEDGER_MATURITY_GRACE_DAYS", raising=False)
        settings = LedgerConfig(_env_file=None)
        
        assert settings.maturity_grace_days == 3
        assert settings.low_balance_threshold == "500.00"
        assert settings.repayment_due_day == 5
        assert settings.repayment_late_day == 15
    
    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("COOP_LEDGER_MATURITY_GRACE_DAYS", "5")
        monkeypatch.setenv("COOP_LEDGER_USE_SQLITE", "false")
        
        settings = LedgerConfig(_env_file=None)
        
        assert settings.maturity_grace_days == 5
        assert settings.use_sqlite is False
    
    def test_reload_replaces_global(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("COOP_LEDGER_API_PORT", "9100")
        try:
            reloaded = reload_config()
            assert reloaded.api_port == 9100
            assert get_config() is reloaded
        finally:
            config_module.config = original


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []
    
    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = get_logger("coop_ledger.tests")
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler
    logger.removeHandler(handler)


class TestLogging:
    """JSON formatting and action logging"""
    
    def test_log_action_attaches_fields(self, captured):
        logger, handler = captured
        
        log_action(logger, "info", "Transaction posted", member_id="M001",
                   action="post_transaction", resource="account:A1", extra={"amount": "10.00"})
        
        record = handler.records[0]
        assert record.member_id == "M001"
        assert record.action == "post_transaction"
        assert record.resource == "account:A1"
        assert record.extra == {"amount": "10.00"}
    
    def test_json_formatter(self, captured):
        logger, handler = captured
        log_action(logger, "warning", "Posting rejected", member_id="M001", action="post_transaction")
        
        entry = json.loads(JSONFormatter().format(handler.records[0]))
        
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "coop_ledger.tests"
        assert entry["message"] == "Posting rejected"
        assert entry["member_id"] == "M001"
        assert "resource" not in entry
        assert entry["timestamp"] == datetime.fromtimestamp(handler.records[0].created, timezone.utc).isoformat()
    
    def test_disabled_level_is_skipped(self, captured):
        logger, handler = captured
        logger.setLevel(logging.ERROR)
        
        log_action(logger, "info", "ignored")
        
        assert handler.records == []
    
    def test_setup_logging_replaces_handlers(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("DEBUG", logger_name="coop_ledger.setup_test", log_file=str(log_file))
        setup_logging("DEBUG", logger_name="coop_ledger.setup_test", log_file=str(log_file))
        
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        
        logger.info("written")
        logger.handlers[0].flush()
        assert json.loads(log_file.read_text().strip())["message"] == "written"
        
        logger.handlers[0].close()
        logger.removeHandler(logger.handlers[0])
