"""
Private Bridge Engine
Transfer state machine, commitment and nullifier sets for Zcash <-> Miden
"""

from .engine import PrivateBridge, TransferListener
from .models import (
    Transfer,
    TransferStatus,
    FailureReason,
    Direction,
    BridgeState,
    CompletionResult,
    transfer_to_dict,
    bridge_state_to_dict,
)
from .errors import (
    BridgeError,
    DuplicateCommitment,
    DoubleSpend,
    TransferNotFound,
    InvalidTransferError,
    TransferStateError,
    error_code,
)
from .store import TransferStore, KeyedLocks

__all__ = [
    # Engine
    'PrivateBridge',
    'TransferListener',
    'TransferStore',
    'KeyedLocks',

    # Models
    'Transfer',
    'TransferStatus',
    'FailureReason',
    'Direction',
    'BridgeState',
    'CompletionResult',
    'transfer_to_dict',
    'bridge_state_to_dict',

    # Exceptions
    'BridgeError',
    'DuplicateCommitment',
    'DoubleSpend',
    'TransferNotFound',
    'InvalidTransferError',
    'TransferStateError',
    'error_code',
]
