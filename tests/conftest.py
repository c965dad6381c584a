"""Shared fixtures for the bridge test suite"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bridge import PrivateBridge
from chains import ChainId, SimulatedChainAdapter
from config.config import RelayerConfig
from utils.utils import PerformanceMonitor
from zk import PoseidonProofSystem

TEST_KEY = bytes(range(32))


class FakeClock:
    """Manually advanced clock for delay and ordering checks"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def proof_system():
    return PoseidonProofSystem(proving_key=TEST_KEY)


@pytest.fixture
def adapters():
    return {
        ChainId.ZCASH: SimulatedChainAdapter(ChainId.ZCASH),
        ChainId.MIDEN: SimulatedChainAdapter(ChainId.MIDEN),
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor():
    return PerformanceMonitor()


@pytest.fixture
def bridge(proof_system, adapters, clock, monitor):
    engine = PrivateBridge(proof_system, adapters, monitor=monitor, worker_threads=2, clock=clock)
    yield engine
    engine._executor.shutdown(wait=True)


@pytest.fixture
def relayer_config():
    return RelayerConfig(poll_interval=0.01, confirmation_delay=0.0)
