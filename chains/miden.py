"""Miden notes for private state transitions."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import AdapterReceipt, ChainId, JsonRpcChainAdapter, random_hex

logger = logging.getLogger(__name__)

# Default script for receiving bridged assets
DEFAULT_NOTE_SCRIPT = """
use.std::account
use.std::asset

begin
    # Receive asset into account
    exec.account::receive_asset
end
"""


@dataclass
class MidenAsset:
    faucet_id: str
    amount: int


@dataclass
class MidenNote:
    id: str
    assets: List[MidenAsset]
    recipient: str
    script: str = DEFAULT_NOTE_SCRIPT
    inputs: List[str] = field(default_factory=list)
    serial_num: str = field(default_factory=lambda: random_hex(32))

    def to_params(self) -> Dict[str, Any]:
        return {
            'note_id': self.id,
            # Amounts travel as strings so no JSON consumer rounds them
            'assets': [{'faucet_id': a.faucet_id, 'amount': str(a.amount)} for a in self.assets],
            'recipient': self.recipient,
            'script': self.script,
            'inputs': list(self.inputs),
            'serial_num': self.serial_num,
        }


def generate_note_id() -> str:
    return f"note_{int(time.time() * 1000)}_{random_hex(16)}"


class MidenAdapter(JsonRpcChainAdapter):
    """Submits faucet-asset notes to the bridge account or the recipient"""

    chain = ChainId.MIDEN

    def __init__(self, rpc_url: str, bridge_account: str, faucet_id: str = "bridge_faucet",
                 timeout: float = 30.0, session=None):
        super().__init__(rpc_url, timeout=timeout, session=session)
        self.bridge_account = bridge_account
        self.faucet_id = faucet_id

    def create_note(self, amount: int, recipient: str, script: Optional[str] = None) -> MidenNote:
        return MidenNote(
            id=generate_note_id(),
            assets=[MidenAsset(faucet_id=self.faucet_id, amount=amount)],
            recipient=recipient,
            script=script or DEFAULT_NOTE_SCRIPT,
        )

    async def submit_note(self, operation: str, note: MidenNote) -> AdapterReceipt:
        result = await self.call_async(operation, 'submit_note', note.to_params())
        tx_hash = result.get('tx_hash') if isinstance(result, dict) else result
        logger.info(f"Miden {operation} note {note.id} submitted: {tx_hash}")

        return AdapterReceipt(
            chain=self.chain,
            operation=operation,
            tx_id=str(tx_hash),
            amount=sum(a.amount for a in note.assets),
            details={'note_id': note.id, 'recipient': note.recipient},
        )

    async def lock(self, amount: int, memo: str) -> AdapterReceipt:
        note = self.create_note(amount, self.bridge_account)
        note.inputs.append(memo)
        return await self.submit_note('lock', note)

    async def release(self, amount: int, recipient: str) -> AdapterReceipt:
        return await self.submit_note('release', self.create_note(amount, recipient))

    async def get_note(self, note_id: str) -> Dict[str, Any]:
        return await self.call_async('query', 'get_note', {'note_id': note_id})
