"""
Bridge Relayer
Periodically completes transfers whose source lock has had time to confirm
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from bridge.engine import PrivateBridge
from bridge.errors import BridgeError, DoubleSpend
from config.config import RelayerConfig

logger = logging.getLogger(__name__)


@dataclass
class RelayerReport:
    """Outcome of one relayer pass"""
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errored: List[str] = field(default_factory=list)
    started_at: float = 0.0
    duration: float = 0.0

    @property
    def processed(self) -> int:
        return len(self.completed) + len(self.failed) + len(self.errored)


class BridgeRelayer:
    def __init__(self, bridge: PrivateBridge, relayer_config: Optional[RelayerConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.bridge = bridge
        self.config = relayer_config or RelayerConfig()
        self.clock = clock
        self.passes = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> RelayerReport:
        """Complete every transfer that has waited out the confirmation delay"""
        report = RelayerReport(started_at=self.clock())

        for transfer_id in self.bridge.relayable_transfers(self.config.confirmation_delay):
            try:
                result = await self.bridge.complete_transfer(transfer_id)
            except DoubleSpend as e:
                logger.critical(f"Relayer stopped double spend on {transfer_id}: {e}")
                report.failed.append(transfer_id)
                continue
            except BridgeError as e:
                logger.error(f"Relayer could not complete {transfer_id}: {e}")
                report.errored.append(transfer_id)
                continue
            except Exception:
                logger.exception(f"Unexpected error relaying {transfer_id}")
                report.errored.append(transfer_id)
                continue

            if result.success:
                report.completed.append(transfer_id)
            elif not result.replayed:
                report.failed.append(transfer_id)

        report.duration = self.clock() - report.started_at
        self.passes += 1

        if report.processed:
            logger.info(
                f"Relayer pass {self.passes}: {len(report.completed)} completed, "
                f"{len(report.failed)} failed, {len(report.errored)} errored")
        return report

    async def run(self, stop_event: asyncio.Event):
        """Loop until `stop_event` is set, one pass every poll interval"""
        logger.info(
            f"Relayer started (poll {self.config.poll_interval}s, "
            f"delay {self.config.confirmation_delay}s)")

        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Relayer stopped")

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self.run(self._stop_event))
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None
