"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Cooperative ledger engine configuration"""
    
    # Storage configuration
    database_path: str = "coop_ledger.db"
    use_sqlite: bool = True
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Settlement rules
    maturity_grace_days: int = 3
    
    # Alert rules
    low_balance_threshold: str = "500.00"
    loan_maturity_window_days: int = 30
    deposit_maturity_window_days: int = 7
    repayment_due_day: int = 5    # Installment reminder after this day of month
    repayment_late_day: int = 15  # Installment overdue after this day of month
    
    class Config:
        env_prefix = "COOP_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
