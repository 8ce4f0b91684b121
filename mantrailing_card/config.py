"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional


class CardConfig(BaseSettings):
    """Mantrailing Card service configuration"""

    # Database configuration
    database_url: str = "sqlite:///mantrailing_card.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    cors_origins: str = "*"  # Comma separated

    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    password_min_length: int = 8
    bootstrap_admin_email: Optional[str] = None  # Created on startup when no user exists
    bootstrap_admin_password: Optional[str] = None

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    session_price: Decimal = Decimal("18.00")
    session_description: str = "Trails"
    recharge_default_description: str = "Aufladung"
    badge_display_cap: int = 500
    timezone: str = "Europe/Berlin"

    # Feature flags
    allow_self_registration: bool = True

    class Config:
        env_prefix = "MANTRAILING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = CardConfig()


def get_config() -> CardConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CardConfig:
    """Reload configuration from environment"""
    global config
    config = CardConfig()
    return config
