"""
Configuration management for fedconsent
Database, attribute allow-list and locking settings
"""

from typing import Tuple
from pydantic_settings import BaseSettings
from pydantic import Field

from .constants import CONSENT_ATTRIBUTE_NAMESPACES, StorageDefaults


class ConsentConfig(BaseSettings):
    """Consent core configuration settings"""

    # Storage settings
    database_url: str = Field(default=StorageDefaults.DATABASE_URL)
    echo_sql: bool = Field(default=False, description="Log every SQL statement")
    lock_timeout_seconds: float = Field(
        default=StorageDefaults.LOCK_TIMEOUT_SECONDS,
        description="Maximum wait for the per-hub lock"
    )

    # Consent settings
    consent_attribute_namespaces: Tuple[str, ...] = Field(
        default=CONSENT_ATTRIBUTE_NAMESPACES,
        description="Namespace prefixes of attributes that may be consented to"
    )
    enforce_consents_default: bool = Field(
        default=True,
        description="enforce_consents flag for hubs created on facility registration"
    )
    default_actor: str = Field(default=StorageDefaults.DEFAULT_ACTOR)
    registry_factory: str = Field(
        default=StorageDefaults.REGISTRY_FACTORY,
        description="module:callable building the user, facility, assignment and attribute directories"
    )

    # Environment-specific overrides
    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "FEDCONSENT_", "case_sensitive": False}


# Global configuration instance
consent_config = ConsentConfig()


def get_config() -> ConsentConfig:
    """Get the global configuration instance"""
    return consent_config


def update_config(**kwargs) -> ConsentConfig:
    """Update configuration with new values"""
    global consent_config
    for key, value in kwargs.items():
        if hasattr(consent_config, key):
            setattr(consent_config, key, value)
    return consent_config
