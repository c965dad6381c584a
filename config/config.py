import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_ZCASH_RPC = "https://testnet.zcash.network"
DEFAULT_MIDEN_RPC = "https://testnet.miden.network"


@dataclass
class ProofConfig:
    backend: str = "poseidon-hmac"
    key_file: Optional[Path] = None
    worker_threads: int = 4

    def __post_init__(self):
        if self.key_file is not None:
            self.key_file = Path(self.key_file)


@dataclass
class ChainConfig:
    simulate: bool = True
    zcash_rpc: str = DEFAULT_ZCASH_RPC
    miden_rpc: str = DEFAULT_MIDEN_RPC
    zcash_custody_address: str = "zs1bridgecustody"
    zcash_funding_address: str = "zs1bridgefunding"
    miden_bridge_account: str = "bridge_account"
    miden_faucet_id: str = "bridge_faucet"
    rpc_timeout: float = 30.0
    simulated_latency: float = 0.0


@dataclass
class RelayerConfig:
    poll_interval: float = 10.0
    confirmation_delay: float = 5.0


@dataclass
class BridgeConfig:
    proof_config: ProofConfig = field(default_factory=ProofConfig)
    chain_config: ChainConfig = field(default_factory=ChainConfig)
    relayer_config: RelayerConfig = field(default_factory=RelayerConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    log_level: str = "INFO"
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        if self.enable_debug_mode:
            self.log_level = "DEBUG"


def apply_env_overrides(config: BridgeConfig) -> BridgeConfig:
    """Environment wins over file values for endpoints and log level"""
    chain = config.chain_config
    chain.zcash_rpc = os.environ.get('ZCASH_TESTNET_RPC', chain.zcash_rpc)
    chain.miden_rpc = os.environ.get('MIDEN_TESTNET_RPC', chain.miden_rpc)
    config.log_level = os.environ.get('BRIDGE_LOG_LEVEL', config.log_level)
    return config


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return section


def load_config(config_path: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    config = BridgeConfig()

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            proof_data = _section(config_data, 'proofs')
            proof_config = ProofConfig(
                backend=proof_data.get('backend', 'poseidon-hmac'),
                key_file=proof_data.get('key_file'),
                worker_threads=proof_data.get('worker_threads', 4)
            )

            chain_data = _section(config_data, 'chains')
            defaults = ChainConfig()
            chain_config = ChainConfig(
                simulate=chain_data.get('simulate', defaults.simulate),
                zcash_rpc=chain_data.get('zcash_rpc', defaults.zcash_rpc),
                miden_rpc=chain_data.get('miden_rpc', defaults.miden_rpc),
                zcash_custody_address=chain_data.get(
                    'zcash_custody_address', defaults.zcash_custody_address),
                zcash_funding_address=chain_data.get(
                    'zcash_funding_address', defaults.zcash_funding_address),
                miden_bridge_account=chain_data.get(
                    'miden_bridge_account', defaults.miden_bridge_account),
                miden_faucet_id=chain_data.get(
                    'miden_faucet_id', defaults.miden_faucet_id),
                rpc_timeout=chain_data.get('rpc_timeout', defaults.rpc_timeout),
                simulated_latency=chain_data.get(
                    'simulated_latency', defaults.simulated_latency)
            )

            relayer_data = _section(config_data, 'relayer')
            relayer_config = RelayerConfig(
                poll_interval=relayer_data.get('poll_interval', 10.0),
                confirmation_delay=relayer_data.get('confirmation_delay', 5.0)
            )

            config = BridgeConfig(
                proof_config=proof_config,
                chain_config=chain_config,
                relayer_config=relayer_config,
                log_dir=Path(config_data.get('log_dir', 'logs')),
                results_dir=Path(config_data.get('results_dir', 'results')),
                log_level=config_data.get('log_level', 'INFO'),
                enable_debug_mode=config_data.get('enable_debug_mode', False)
            )
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.warning(
                f"Could not load config file {config_path}: {e}; using default configuration")
            config = BridgeConfig()

    return apply_env_overrides(config)


def save_config(config: BridgeConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    key_file = config.proof_config.key_file
    config_data = {
        'proofs': {
            'backend': config.proof_config.backend,
            'key_file': str(key_file) if key_file else None,
            'worker_threads': config.proof_config.worker_threads
        },
        'chains': {
            'simulate': config.chain_config.simulate,
            'zcash_rpc': config.chain_config.zcash_rpc,
            'miden_rpc': config.chain_config.miden_rpc,
            'zcash_custody_address': config.chain_config.zcash_custody_address,
            'zcash_funding_address': config.chain_config.zcash_funding_address,
            'miden_bridge_account': config.chain_config.miden_bridge_account,
            'miden_faucet_id': config.chain_config.miden_faucet_id,
            'rpc_timeout': config.chain_config.rpc_timeout,
            'simulated_latency': config.chain_config.simulated_latency
        },
        'relayer': {
            'poll_interval': config.relayer_config.poll_interval,
            'confirmation_delay': config.relayer_config.confirmation_delay
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'log_level': config.log_level,
        'enable_debug_mode': config.enable_debug_mode
    }

    Path(config_path).parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.safe_dump(config_data, f, default_flow_style=False)
