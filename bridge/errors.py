"""Bridge engine exceptions. Each carries a stable `code` for transports."""

from chains.base import AdapterError
from zk.zk_proofs import ProofGenerationError


class BridgeError(Exception):
    """Base exception for bridge engine operations"""
    code = "BRIDGE_ERROR"


class DuplicateCommitment(BridgeError):
    """Commitment already registered; regenerate the secret or seed"""
    code = "DUPLICATE_COMMITMENT"

    def __init__(self, commitment: str):
        super().__init__(f"Commitment already exists: {commitment}")
        self.commitment = commitment


class DoubleSpend(BridgeError):
    """Nullifier already consumed by a completed transfer"""
    code = "DOUBLE_SPEND"

    def __init__(self, transfer_id: str, nullifier: str):
        super().__init__(
            f"Nullifier already used (double-spend attempt) by transfer {transfer_id}")
        self.transfer_id = transfer_id
        self.nullifier = nullifier


class TransferNotFound(BridgeError):
    code = "NOT_FOUND"

    def __init__(self, transfer_id: str):
        super().__init__(f"Transfer not found: {transfer_id}")
        self.transfer_id = transfer_id


class InvalidTransferError(BridgeError):
    """Transfer parameters rejected before anything was recorded"""
    code = "INVALID_TRANSFER"


class TransferStateError(BridgeError):
    """Operation not allowed in the transfer's current status"""
    code = "TRANSFER_NOT_READY"


ERROR_CODES = {
    ProofGenerationError: "PROOF_GENERATION_ERROR",
    AdapterError: "ADAPTER_ERROR",
}


def error_code(error: BaseException) -> str:
    """Stable code for any error the engine may surface"""
    if isinstance(error, BridgeError):
        return error.code
    for error_type, code in ERROR_CODES.items():
        if isinstance(error, error_type):
            return code
    return "INTERNAL_ERROR"
