"""Background relayer that drives locked transfers to completion."""

from .relayer import BridgeRelayer, RelayerReport

__all__ = ['BridgeRelayer', 'RelayerReport']
