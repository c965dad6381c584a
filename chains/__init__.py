"""Chain adapters: the boundary between the bridge engine and the two ledgers."""

from typing import Dict

from .base import (
    ChainId,
    ChainAdapter,
    JsonRpcChainAdapter,
    SimulatedChainAdapter,
    AdapterError,
    AdapterReceipt,
)
from .zcash import ZcashAdapter, zatoshi_to_zec
from .miden import MidenAdapter, MidenNote, MidenAsset


def build_adapters(chain_config) -> Dict[ChainId, ChainAdapter]:
    """One adapter per chain, simulated or JSON-RPC depending on config"""
    if chain_config.simulate:
        return {
            ChainId.ZCASH: SimulatedChainAdapter(ChainId.ZCASH, chain_config.simulated_latency),
            ChainId.MIDEN: SimulatedChainAdapter(ChainId.MIDEN, chain_config.simulated_latency),
        }

    return {
        ChainId.ZCASH: ZcashAdapter(
            chain_config.zcash_rpc,
            custody_address=chain_config.zcash_custody_address,
            funding_address=chain_config.zcash_funding_address,
            timeout=chain_config.rpc_timeout,
        ),
        ChainId.MIDEN: MidenAdapter(
            chain_config.miden_rpc,
            bridge_account=chain_config.miden_bridge_account,
            faucet_id=chain_config.miden_faucet_id,
            timeout=chain_config.rpc_timeout,
        ),
    }


__all__ = [
    'ChainId',
    'ChainAdapter',
    'JsonRpcChainAdapter',
    'SimulatedChainAdapter',
    'AdapterError',
    'AdapterReceipt',
    'ZcashAdapter',
    'MidenAdapter',
    'MidenNote',
    'MidenAsset',
    'zatoshi_to_zec',
    'build_adapters',
]
