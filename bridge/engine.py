"""
Private Bridge Engine
=====================
Owns the transfer table, the commitment set and the nullifier set, and drives
every transfer through PENDING -> PROVING -> RELAYING -> COMPLETED (or FAILED).

Proving, verification and chain calls never run while the store lock is held;
only the table and set mutations do.
"""

import asyncio
import functools
import inspect
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from chains import build_adapters
from chains.base import AdapterError, AdapterReceipt, ChainAdapter, ChainId
from utils.utils import PerformanceMonitor, generate_secure_id
from zk.zk_proofs import (
    PoseidonProofSystem,
    ProofGenerationError,
    ProofService,
    proof_fingerprint,
)

from .errors import (
    DoubleSpend,
    DuplicateCommitment,
    InvalidTransferError,
    TransferNotFound,
    TransferStateError,
)
from .models import (
    IN_FLIGHT_STATUSES,
    RELAYABLE_STATUSES,
    BridgeState,
    CompletionResult,
    Direction,
    FailureReason,
    Transfer,
    TransferStatus,
    short_digest,
    transfer_to_dict,
)
from .store import TransferStore

logger = logging.getLogger(__name__)

TransferListener = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class PrivateBridge:
    """
    Bridge transfer engine for Zcash <-> Miden.

    Both directions share one flow; the direction only selects which adapter
    locks on the source side and which releases on the destination side.
    """

    def __init__(
        self,
        proof_system: ProofService,
        adapters: Dict[ChainId, ChainAdapter],
        monitor: Optional[PerformanceMonitor] = None,
        worker_threads: int = 4,
        clock: Callable[[], float] = time.time
    ):
        missing = [chain.value for chain in ChainId if chain not in adapters]
        if missing:
            raise ValueError(f"Missing chain adapters for: {', '.join(missing)}")

        self.proof_system = proof_system
        self.adapters = adapters
        self.monitor = monitor or PerformanceMonitor()
        self.clock = clock
        self.store = TransferStore()

        self._executor = ThreadPoolExecutor(
            max_workers=worker_threads, thread_name_prefix="bridge-proof")
        self._listeners: List[TransferListener] = []
        self._last_timestamp = 0.0

    @classmethod
    def from_config(cls, config, monitor: Optional[PerformanceMonitor] = None) -> 'PrivateBridge':
        proof_config = config.proof_config
        if proof_config.backend != PoseidonProofSystem.PROTOCOL:
            raise ValueError(f"Unsupported proof backend: {proof_config.backend}")

        return cls(
            PoseidonProofSystem(key_file=proof_config.key_file),
            build_adapters(config.chain_config),
            monitor=monitor,
            worker_threads=proof_config.worker_threads,
        )

    async def initialize(self):
        await self.proof_system.initialize()
        logger.info("Private bridge initialized")

    async def close(self):
        for adapter in self.adapters.values():
            await adapter.close()
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: TransferListener):
        """Receive a `transfer_update` event on every status change"""
        self._listeners.append(listener)

    def remove_listener(self, listener: TransferListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, transfer: Transfer):
        event = {'type': 'transfer_update', 'data': transfer_to_dict(transfer)}
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Transfer listener failed for {transfer.id}: {e}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_blocking(self, operation: str, func: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        with self.monitor.start_operation(operation):
            return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    async def _adapter_call(self, chain: ChainId, operation: str, *args) -> AdapterReceipt:
        adapter = self.adapters[chain]
        with self.monitor.start_operation(operation):
            try:
                return await getattr(adapter, operation)(*args)
            except AdapterError:
                raise
            except Exception as e:
                raise AdapterError(chain, operation, str(e)) from e

    def _next_timestamp(self) -> float:
        # Keeps creation times non-decreasing even if the wall clock steps back
        now = max(self.clock(), self._last_timestamp)
        self._last_timestamp = now
        return now

    async def _fail(self, transfer: Transfer, reason: FailureReason, error: Any):
        async with self.store.lock:
            transfer.failure_reason = reason
            transfer.error = str(error)
            transfer.transition(TransferStatus.FAILED, self.clock())
        await self._notify(transfer)

    @staticmethod
    def _validate(direction: Any, amount: Any, recipient: Any) -> Direction:
        if not isinstance(direction, Direction):
            try:
                direction = Direction(direction)
            except ValueError as e:
                raise InvalidTransferError(f"Unknown direction: {direction!r}") from e
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidTransferError("Amount must be a positive integer")
        if not isinstance(recipient, str) or not recipient.strip():
            raise InvalidTransferError("Recipient must be a non-empty string")
        return direction

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    async def initiate_transfer(
        self,
        direction: Union[Direction, str],
        amount: int,
        recipient: str,
        secret: int,
        nullifier_seed: int
    ) -> Transfer:
        """
        Register a commitment, prove it and lock funds on the source chain.

        Raises DuplicateCommitment before anything is recorded when the same
        (amount, secret, seed) was seen before. Proof or lock failures leave
        a FAILED transfer behind and re-raise.
        """
        direction = self._validate(direction, amount, recipient)
        source, destination = direction.source, direction.destination

        commitment = await self._run_blocking(
            'commit', self.proof_system.commit, amount, secret, nullifier_seed)

        transfer_id = generate_secure_id("transfer", 18)
        async with self.store.transfer_locks.hold(transfer_id):
            async with self.store.lock:
                if self.store.has_commitment(commitment):
                    logger.warning(
                        f"Rejected duplicate commitment {short_digest(commitment)}")
                    raise DuplicateCommitment(commitment)

                now = self._next_timestamp()
                transfer = Transfer(
                    id=transfer_id,
                    source_chain=source,
                    destination_chain=destination,
                    amount=amount,
                    recipient=recipient,
                    commitment=commitment,
                    status=TransferStatus.PENDING,
                    timestamp=now,
                    updated_at=now,
                )
                self.store.register(transfer)

            logger.info(
                f"Transfer {transfer_id} registered: {source.value} -> {destination.value}, "
                f"commitment {short_digest(commitment)}")
            await self._notify(transfer)

            try:
                artifact = await self._run_blocking(
                    'prove', self.proof_system.prove, amount, secret, nullifier_seed,
                    recipient, source.numeric_id, destination.numeric_id)
                if artifact.public_signals[0] != commitment:
                    raise ProofGenerationError(
                        "Proof commits to a different commitment")
            except Exception as e:
                error = e if isinstance(e, ProofGenerationError) else ProofGenerationError(str(e))
                logger.error(f"Proof generation failed for {transfer_id}: {error}")
                await self._fail(transfer, FailureReason.PROOF_GENERATION_ERROR, error)
                if error is e:
                    raise
                raise error from e

            async with self.store.lock:
                transfer.proof = artifact
                transfer.nullifier = artifact.public_signals[1]
                transfer.transition(TransferStatus.PROVING, self.clock())
            await self._notify(transfer)

            memo = f"Bridge to {destination.display_name}: {transfer_id}"
            try:
                receipt = await self._adapter_call(source, 'lock', amount, memo)
            except AdapterError as e:
                logger.error(f"Source lock failed for {transfer_id}: {e}")
                await self._fail(transfer, FailureReason.ADAPTER_ERROR, e)
                raise
            except asyncio.CancelledError:
                logger.error(f"Source lock cancelled for {transfer_id}; outcome unknown")
                await self._fail(transfer, FailureReason.ADAPTER_ERROR, "lock cancelled")
                raise

            async with self.store.lock:
                transfer.source_locked = True

            logger.info(
                f"Transfer {transfer_id}: {amount} locked on {source.value} (tx {receipt.tx_id})")
            return transfer.snapshot()

    async def bridge_zcash_to_miden(self, amount: int, recipient: str, secret: int,
                                    nullifier_seed: int) -> Transfer:
        return await self.initiate_transfer(
            Direction.ZCASH_TO_MIDEN, amount, recipient, secret, nullifier_seed)

    async def bridge_miden_to_zcash(self, amount: int, recipient: str, secret: int,
                                    nullifier_seed: int) -> Transfer:
        return await self.initiate_transfer(
            Direction.MIDEN_TO_ZCASH, amount, recipient, secret, nullifier_seed)

    # ------------------------------------------------------------------
    # Complete
    # ------------------------------------------------------------------

    async def _verify(self, transfer: Transfer) -> bool:
        proof = transfer.proof.proof if transfer.proof else None
        try:
            return bool(await self._run_blocking(
                'verify', self.proof_system.verify, proof,
                [transfer.commitment, transfer.nullifier, transfer.recipient,
                 str(transfer.source_chain.numeric_id),
                 str(transfer.destination_chain.numeric_id)]))
        except Exception as e:
            logger.error(f"Verifier raised for {transfer.id}: {e}")
            return False

    async def complete_transfer(self, transfer_id: str) -> CompletionResult:
        """
        Verify, check the nullifier, release on the destination chain.

        Terminal transfers are reported as-is without side effects. Returns
        success=False for a failed verification or release; raises
        DoubleSpend when the nullifier was already consumed.
        """
        if self.store.get(transfer_id) is None:
            raise TransferNotFound(transfer_id)

        async with self.store.transfer_locks.hold(transfer_id):
            transfer = self.store.get(transfer_id)

            if transfer.status.is_terminal:
                logger.debug(
                    f"Transfer {transfer_id} already {transfer.status.value}")
                return CompletionResult(
                    success=transfer.status is TransferStatus.COMPLETED,
                    transfer=transfer.snapshot(),
                    replayed=True,
                )

            if transfer.status not in RELAYABLE_STATUSES:
                raise TransferStateError(
                    f"Transfer {transfer_id} is {transfer.status.value}, not ready to complete")

            if not await self._verify(transfer):
                logger.warning(f"Proof verification failed for {transfer_id}")
                await self._fail(transfer, FailureReason.VERIFICATION_FAILED,
                                 "Proof verification failed")
                return CompletionResult(success=False, transfer=transfer.snapshot())

            logger.debug(
                f"Proof {proof_fingerprint(transfer.proof.proof)} verified for {transfer_id}")

            nullifier = transfer.nullifier
            async with self.store.nullifier_locks.hold(nullifier):
                async with self.store.lock:
                    spent_by = self.store.spent_by(nullifier)
                    if spent_by is None and transfer.status is TransferStatus.PROVING:
                        transfer.transition(TransferStatus.RELAYING, self.clock())

                if spent_by is not None:
                    logger.critical(
                        f"DOUBLE SPEND: transfer {transfer_id} reuses nullifier {nullifier} "
                        f"already spent by {spent_by}")
                    error = DoubleSpend(transfer_id, nullifier)
                    await self._fail(transfer, FailureReason.DOUBLE_SPEND, error)
                    raise error

                await self._notify(transfer)

                destination = transfer.destination_chain
                try:
                    receipt = await self._adapter_call(
                        destination, 'release', transfer.amount, transfer.recipient)
                except AdapterError as e:
                    logger.error(f"Destination release failed for {transfer_id}: {e}")
                    await self._fail(transfer, FailureReason.ADAPTER_ERROR, e)
                    return CompletionResult(
                        success=False, transfer=transfer.snapshot(), error=e)
                except asyncio.CancelledError:
                    # The release may have landed; FAILED blocks any second release
                    logger.error(f"Destination release cancelled for {transfer_id}; outcome unknown")
                    await self._fail(transfer, FailureReason.ADAPTER_ERROR, "release cancelled")
                    raise

                async with self.store.lock:
                    self.store.mark_spent(nullifier, transfer_id)
                    transfer.transition(TransferStatus.COMPLETED, self.clock())

            logger.info(
                f"Transfer {transfer_id} completed: {transfer.amount} released on "
                f"{destination.value} (tx {receipt.tx_id})")
            await self._notify(transfer)
            return CompletionResult(success=True, transfer=transfer.snapshot())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transfer(self, transfer_id: str) -> Transfer:
        transfer = self.store.get(transfer_id)
        if transfer is None:
            raise TransferNotFound(transfer_id)
        return transfer.snapshot()

    def list_transfers(self) -> List[Transfer]:
        return [t.snapshot() for t in self.store.transfers()]

    def relayable_transfers(self, min_age: float = 0.0) -> List[str]:
        """Ids of in-flight transfers created more than `min_age` seconds ago"""
        now = self.clock()
        return [t.id for t in self.store.transfers()
                if t.status in RELAYABLE_STATUSES and now - t.timestamp > min_age]

    def is_nullifier_spent(self, nullifier: str) -> bool:
        return self.store.is_spent(nullifier)

    async def get_bridge_state(self) -> BridgeState:
        """Totals, in-flight count and Merkle root over all commitments"""
        async with self.store.lock:
            transfers = self.store.transfers()
            commitments = self.store.commitments()

            completed = [t for t in transfers if t.status is TransferStatus.COMPLETED]
            total_bridged = sum(t.amount for t in completed)
            total_locked = sum(t.amount for t in transfers if t.source_locked)
            active = sum(1 for t in transfers if t.status in IN_FLIGHT_STATUSES)
            failed = sum(1 for t in transfers if t.status is TransferStatus.FAILED)
            computed_at = self.clock()

        root = await self._run_blocking(
            'merkle_root', self.proof_system.merkle_root, commitments)

        return BridgeState(
            total_locked=total_locked,
            total_bridged=total_bridged,
            active_transfers=active,
            merkle_root=root,
            completed_transfers=len(completed),
            failed_transfers=failed,
            computed_at=computed_at,
        )
