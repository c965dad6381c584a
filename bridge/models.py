"""
Transfer records, the status machine and their wire representation
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from chains.base import ChainId
from zk.zk_proofs import ProofArtifact


class TransferStatus(Enum):
    PENDING = "pending"
    PROVING = "proving"
    RELAYING = "relaying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.FAILED)


IN_FLIGHT_STATUSES = frozenset(
    {TransferStatus.PENDING, TransferStatus.PROVING, TransferStatus.RELAYING})

# Statuses the relayer may drive to completion
RELAYABLE_STATUSES = frozenset({TransferStatus.PROVING, TransferStatus.RELAYING})

ALLOWED_TRANSITIONS = {
    TransferStatus.PENDING: {TransferStatus.PROVING, TransferStatus.FAILED},
    TransferStatus.PROVING: {TransferStatus.RELAYING, TransferStatus.FAILED},
    TransferStatus.RELAYING: {TransferStatus.COMPLETED, TransferStatus.FAILED},
    TransferStatus.COMPLETED: set(),
    TransferStatus.FAILED: set(),
}


class FailureReason(Enum):
    PROOF_GENERATION_ERROR = "proof_generation_error"
    ADAPTER_ERROR = "adapter_error"
    VERIFICATION_FAILED = "verification_failed"
    DOUBLE_SPEND = "double_spend"


class Direction(Enum):
    """Which chain plays the source role"""
    ZCASH_TO_MIDEN = "zcash-to-miden"
    MIDEN_TO_ZCASH = "miden-to-zcash"

    @property
    def source(self) -> ChainId:
        return ChainId.ZCASH if self is Direction.ZCASH_TO_MIDEN else ChainId.MIDEN

    @property
    def destination(self) -> ChainId:
        return ChainId.MIDEN if self is Direction.ZCASH_TO_MIDEN else ChainId.ZCASH

    @classmethod
    def between(cls, source: ChainId, destination: ChainId) -> 'Direction':
        for direction in cls:
            if direction.source is source and direction.destination is destination:
                return direction
        raise ValueError(f"No bridge route from {source.value} to {destination.value}")


@dataclass
class Transfer:
    """One shielded transfer between the two chains"""
    id: str
    source_chain: ChainId
    destination_chain: ChainId
    amount: int
    recipient: str
    commitment: str
    status: TransferStatus
    timestamp: float
    nullifier: Optional[str] = None
    proof: Optional[ProofArtifact] = None
    updated_at: Optional[float] = None
    source_locked: bool = False
    failure_reason: Optional[FailureReason] = None
    error: Optional[str] = None

    @property
    def direction(self) -> Direction:
        return Direction.between(self.source_chain, self.destination_chain)

    def transition(self, new_status: TransferStatus, now: float):
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal transition {self.status.value} -> {new_status.value} for {self.id}")
        self.status = new_status
        self.updated_at = now

    def snapshot(self) -> 'Transfer':
        """Detached copy handed to callers outside the engine"""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return transfer_to_dict(self)


@dataclass
class BridgeState:
    """Projection over the transfer table, recomputed on every query"""
    total_locked: int
    total_bridged: int
    active_transfers: int
    merkle_root: str
    completed_transfers: int = 0
    failed_transfers: int = 0
    computed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return bridge_state_to_dict(self)


@dataclass
class CompletionResult:
    """Outcome of completeTransfer; `replayed` marks an idempotent repeat"""
    success: bool
    transfer: Transfer
    replayed: bool = False
    error: Optional[BaseException] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'transfer': transfer_to_dict(self.transfer),
            'replayed': self.replayed,
        }


def transfer_to_dict(transfer: Transfer) -> Dict[str, Any]:
    """Wire form: amounts as decimal strings, digests at full width"""
    return {
        'id': transfer.id,
        'sourceChain': transfer.source_chain.value,
        'destinationChain': transfer.destination_chain.value,
        'amount': str(transfer.amount),
        'recipient': transfer.recipient,
        'commitment': transfer.commitment,
        'nullifier': transfer.nullifier,
        'proof': transfer.proof.proof if transfer.proof else None,
        'publicSignals': list(transfer.proof.public_signals) if transfer.proof else None,
        'status': transfer.status.value,
        'timestamp': transfer.timestamp,
        'updatedAt': transfer.updated_at,
        'sourceLocked': transfer.source_locked,
        'failureReason': transfer.failure_reason.value if transfer.failure_reason else None,
        'error': transfer.error,
    }


def bridge_state_to_dict(state: BridgeState) -> Dict[str, Any]:
    return {
        'totalLocked': str(state.total_locked),
        'totalBridged': str(state.total_bridged),
        'activeTransfers': state.active_transfers,
        'merkleRoot': state.merkle_root,
        'completedTransfers': state.completed_transfers,
        'failedTransfers': state.failed_transfers,
        'computedAt': state.computed_at,
    }


def short_digest(digest: Optional[str], length: int = 16) -> str:
    """Display-only truncation"""
    if not digest:
        return "-"
    return f"{digest[:length]}..."
