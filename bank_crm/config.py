"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CRMConfig(BaseSettings):
    """Bank CRM configuration"""
    
    model_config = SettingsConfigDict(
        env_prefix="BANK_CRM_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
    
    # Database configuration
    database_path: str = "bank_crm.db"  # SQLite file
    use_durable_store: bool = True  # False forces in-memory mode
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text


# Global configuration instance
config = CRMConfig()


def get_config() -> CRMConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CRMConfig:
    """Reload configuration from environment"""
    global config
    config = CRMConfig()
    return config
