"""Zcash shielded transfers through zcashd's JSON-RPC interface."""

import logging
from decimal import Decimal

from .base import AdapterError, AdapterReceipt, ChainId, JsonRpcChainAdapter

logger = logging.getLogger(__name__)

ZATOSHI_PER_ZEC = 10 ** 8
MEMO_MAX_BYTES = 512


def zatoshi_to_zec(amount: int) -> str:
    """Exact decimal string, never a float"""
    return format(Decimal(amount) / Decimal(ZATOSHI_PER_ZEC), 'f')


def encode_memo(memo: str) -> str:
    raw = memo.encode('utf-8')
    if len(raw) > MEMO_MAX_BYTES:
        raise ValueError(f"Zcash memo exceeds {MEMO_MAX_BYTES} bytes")
    return raw.hex()


class ZcashAdapter(JsonRpcChainAdapter):
    """Locks into and releases from the bridge's shielded custody address"""

    chain = ChainId.ZCASH

    def __init__(self, rpc_url: str, custody_address: str, funding_address: str,
                 timeout: float = 30.0, session=None):
        super().__init__(rpc_url, timeout=timeout, session=session)
        self.custody_address = custody_address
        self.funding_address = funding_address

    async def _send_many(self, operation: str, from_address: str, to_address: str,
                         amount: int, memo: str = "") -> AdapterReceipt:
        output = {'address': to_address, 'amount': zatoshi_to_zec(amount)}
        if memo:
            try:
                output['memo'] = encode_memo(memo)
            except ValueError as e:
                raise AdapterError(self.chain, operation, str(e)) from e

        result = await self.call_async(operation, 'z_sendmany', [from_address, [output]])
        logger.info(f"Zcash {operation} of {amount} zatoshi submitted: {result}")

        return AdapterReceipt(
            chain=self.chain,
            operation=operation,
            tx_id=str(result),
            amount=amount,
            details={'to': to_address},
        )

    async def lock(self, amount: int, memo: str) -> AdapterReceipt:
        return await self._send_many('lock', self.funding_address,
                                     self.custody_address, amount, memo)

    async def release(self, amount: int, recipient: str) -> AdapterReceipt:
        return await self._send_many('release', self.custody_address, recipient,
                                     amount, "Bridge release")

    async def get_transaction(self, txid: str):
        return await self.call_async('query', 'gettransaction', [txid])
