"""
In-process transfer store owned by the bridge engine.

All writes to the transfer table, commitment set and nullifier set happen
while `lock` is held. Keyed locks serialize work per transfer id and per
nullifier without blocking unrelated transfers.
"""

import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Dict, Hashable, List, Optional

from .models import Transfer


class KeyedLocks:
    """Lazily created asyncio locks, one per key"""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TransferStore:
    def __init__(self):
        self.lock = asyncio.Lock()
        self.transfer_locks = KeyedLocks()
        self.nullifier_locks = KeyedLocks()

        self._transfers: "OrderedDict[str, Transfer]" = OrderedDict()
        # dict keeps insertion order for the Merkle accumulator
        self._commitments: Dict[str, str] = {}
        self._nullifiers: Dict[str, str] = {}

    # Reads need no lock: the event loop never interleaves inside them

    def get(self, transfer_id: str) -> Optional[Transfer]:
        return self._transfers.get(transfer_id)

    def transfers(self) -> List[Transfer]:
        return list(self._transfers.values())

    def commitments(self) -> List[str]:
        return list(self._commitments)

    def has_commitment(self, commitment: str) -> bool:
        return commitment in self._commitments

    def is_spent(self, nullifier: str) -> bool:
        return nullifier in self._nullifiers

    def spent_by(self, nullifier: str) -> Optional[str]:
        return self._nullifiers.get(nullifier)

    def __len__(self) -> int:
        return len(self._transfers)

    # Writes: callers must hold `lock`

    def _require_lock(self):
        if not self.lock.locked():
            raise RuntimeError("TransferStore mutated without holding its lock")

    def register(self, transfer: Transfer):
        """Insert a new transfer and its commitment as one step"""
        self._require_lock()
        if transfer.id in self._transfers:
            raise KeyError(f"Duplicate transfer id {transfer.id}")
        if transfer.commitment in self._commitments:
            raise KeyError(f"Commitment already registered: {transfer.commitment}")
        self._transfers[transfer.id] = transfer
        self._commitments[transfer.commitment] = transfer.id

    def mark_spent(self, nullifier: str, transfer_id: str):
        self._require_lock()
        if nullifier in self._nullifiers:
            raise KeyError(f"Nullifier already spent: {nullifier}")
        self._nullifiers[nullifier] = transfer_id
