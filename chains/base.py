"""
Chain adapter contract shared by the Zcash and Miden clients
"""

import asyncio
import functools
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class ChainId(Enum):
    """The two ledgers the bridge connects"""
    ZCASH = "zcash"
    MIDEN = "miden"

    @property
    def numeric_id(self) -> int:
        """Identifier used inside proof public signals"""
        return 0 if self is ChainId.ZCASH else 1

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class AdapterError(Exception):
    """Chain-side failure while locking or releasing funds"""

    def __init__(self, chain: ChainId, operation: str, message: str):
        super().__init__(f"{chain.value} {operation} failed: {message}")
        self.chain = chain
        self.operation = operation


@dataclass
class AdapterReceipt:
    """What a chain returned for a lock or release call"""
    chain: ChainId
    operation: str
    tx_id: str
    amount: int
    timestamp: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)


def random_hex(num_bytes: int) -> str:
    return secrets.token_hex(num_bytes)


class ChainAdapter(ABC):
    """Builds and submits chain-native transactions for one ledger"""

    chain: ChainId

    @abstractmethod
    async def lock(self, amount: int, memo: str) -> AdapterReceipt:
        """Lock `amount` on this chain on behalf of the bridge"""

    @abstractmethod
    async def release(self, amount: int, recipient: str) -> AdapterReceipt:
        """Pay `amount` out of the bridge to `recipient`"""

    async def close(self):
        pass


class JsonRpcChainAdapter(ChainAdapter):
    """JSON-RPC 2.0 over HTTP, executed in a worker thread"""

    def __init__(self, rpc_url: str, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_id = 0
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        # call() runs on executor threads
        with self._id_lock:
            self._request_id += 1
            return self._request_id

    def call(self, operation: str, method: str, params: Any) -> Any:
        """Blocking JSON-RPC call; every failure becomes an AdapterError"""
        payload = {
            'jsonrpc': '2.0',
            'id': self._next_id(),
            'method': method,
            'params': params,
        }

        try:
            response = self.session.post(
                self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise AdapterError(self.chain, operation,
                               f"{method} request failed: {e}") from e
        except ValueError as e:
            raise AdapterError(self.chain, operation,
                               f"{method} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise AdapterError(self.chain, operation,
                               f"{method} returned unexpected payload")

        error = body.get('error')
        if error:
            message = error.get('message', error) if isinstance(
                error, dict) else error
            raise AdapterError(self.chain, operation,
                               f"{method} rejected: {message}")

        if body.get('result') is None:
            raise AdapterError(self.chain, operation,
                               f"{method} returned no result")

        return body['result']

    async def call_async(self, operation: str, method: str, params: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.call, operation, method, params))

    async def close(self):
        self.session.close()


class SimulatedChainAdapter(ChainAdapter):
    """
    In-process adapter that records every call.

    Used by the demo and the tests. `fail_next(operation)` makes the next
    call of that operation raise AdapterError; `fail_always` makes every
    call of the listed operations fail.
    """

    def __init__(self, chain: ChainId, latency: float = 0.0):
        self.chain = chain
        self.latency = latency
        self.calls: List[AdapterReceipt] = []
        self.fail_always: set = set()
        self._fail_next: Dict[str, int] = {}

    def fail_next(self, operation: str, times: int = 1):
        self._fail_next[operation] = self._fail_next.get(operation, 0) + times

    def calls_for(self, operation: str) -> List[AdapterReceipt]:
        return [c for c in self.calls if c.operation == operation]

    async def _submit(self, operation: str, amount: int, details: Dict[str, Any]) -> AdapterReceipt:
        if self.latency:
            await asyncio.sleep(self.latency)

        if operation in self.fail_always or self._fail_next.get(operation, 0) > 0:
            if self._fail_next.get(operation, 0) > 0:
                self._fail_next[operation] -= 1
            raise AdapterError(self.chain, operation, "simulated chain failure")

        receipt = AdapterReceipt(
            chain=self.chain,
            operation=operation,
            tx_id=random_hex(32),
            amount=amount,
            details=details,
        )
        self.calls.append(receipt)
        return receipt

    async def lock(self, amount: int, memo: str) -> AdapterReceipt:
        return await self._submit('lock', amount, {'memo': memo})

    async def release(self, amount: int, recipient: str) -> AdapterReceipt:
        return await self._submit('release', amount, {'recipient': recipient})
