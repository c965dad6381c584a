"""Configuration management for the private bridge."""

from .config import (
    BridgeConfig,
    ProofConfig,
    ChainConfig,
    RelayerConfig,
    load_config,
    save_config,
    apply_env_overrides,
)

__all__ = ['BridgeConfig', 'ProofConfig', 'ChainConfig', 'RelayerConfig',
           'load_config', 'save_config', 'apply_env_overrides']
