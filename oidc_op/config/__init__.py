"""
Configuration Module for the OpenID Provider core
"""

from .provider_config import (
    ProviderConfig,
    TokenConfig,
    PKCEConfig,
    ClientAuthConfig,
    SigningConfig,
    StorageConfig,
    SecurityPolicyConfig,
    LoggingConfig,
    ServerConfig,
    get_provider_config,
    get_development_config,
)
from .logging_setup import configure_logging

__all__ = [
    'ProviderConfig',
    'TokenConfig',
    'PKCEConfig',
    'ClientAuthConfig',
    'SigningConfig',
    'StorageConfig',
    'SecurityPolicyConfig',
    'LoggingConfig',
    'ServerConfig',
    'get_provider_config',
    'get_development_config',
    'configure_logging',
]
