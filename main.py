import argparse
import asyncio
import logging
import secrets
import sys
from pathlib import Path
from typing import Any, Dict, List

from bridge import Direction, PrivateBridge, TransferStatus, error_code
from config.config import BridgeConfig, load_config
from relayer import BridgeRelayer
from utils.utils import (
    PerformanceMonitor,
    create_performance_report,
    format_duration,
    save_results,
    setup_logging,
)
from zk.zk_proofs import CircomPoseidon

logger = logging.getLogger(__name__)


def random_field_element() -> int:
    return secrets.randbelow(CircomPoseidon.PRIME - 1) + 1


class BridgeOrchestrator:
    """Runs demo transfers through the engine and the relayer"""

    def __init__(self, config: BridgeConfig):
        self.config = config
        self.performance_monitor = PerformanceMonitor()
        self.bridge = PrivateBridge.from_config(config, monitor=self.performance_monitor)
        self.relayer = BridgeRelayer(self.bridge, config.relayer_config)
        self.events: List[Dict[str, Any]] = []
        self.results: Dict[str, Any] = {
            'transfers': [],
            'bridge_state': None,
            'relayer_passes': [],
            'rejected': [],
            'events': 0,
        }

        self.bridge.add_listener(self.events.append)
        logger.info("Initialized Bridge Orchestrator")

    async def submit(self, direction: Direction, amount: int, recipient: str):
        try:
            transfer = await self.bridge.initiate_transfer(
                direction, amount, recipient,
                secret=random_field_element(),
                nullifier_seed=random_field_element())
        except Exception as e:
            logger.error(f"Transfer to {recipient} rejected: {e}")
            self.results['rejected'].append({'recipient': recipient, 'code': error_code(e)})
            return None

        logger.info(f"Submitted {transfer.id} ({direction.value}, {amount})")
        return transfer

    async def run(self, num_transfers: int) -> Dict[str, Any]:
        await self.bridge.initialize()

        directions = [Direction.ZCASH_TO_MIDEN, Direction.MIDEN_TO_ZCASH]
        submissions = [
            self.submit(directions[i % 2], 10_000 * (i + 1), f"recipient_{i:04d}")
            for i in range(num_transfers)
        ]
        await asyncio.gather(*submissions)

        # Locks must be strictly older than the confirmation delay
        await asyncio.sleep(self.config.relayer_config.confirmation_delay + 0.05)
        report = await self.relayer.run_once()
        self.results['relayer_passes'].append({
            'completed': report.completed,
            'failed': report.failed,
            'errored': report.errored,
            'duration': report.duration,
        })

        state = await self.bridge.get_bridge_state()
        self.results['bridge_state'] = state.to_dict()
        self.results['transfers'] = [t.to_dict() for t in self.bridge.list_transfers()]
        self.results['events'] = len(self.events)
        return self.results

    async def close(self):
        await self.bridge.close()


async def run_demo(config: BridgeConfig, num_transfers: int = 6) -> bool:
    print("=" * 80)
    print("  PRIVATE BRIDGE - ZCASH <-> MIDEN DEMONSTRATION")
    print("   Poseidon commitments + nullifiers + relayer")
    print("=" * 80)

    orchestrator = BridgeOrchestrator(config)
    simulated = "simulated" if config.chain_config.simulate else "JSON-RPC"

    print(f"\nConfiguration:")
    print(f"   • Proof backend: {config.proof_config.backend}")
    print(f"   • Chain adapters: {simulated}")
    print(f"   • Confirmation delay: {config.relayer_config.confirmation_delay}s")

    print(f"\nSubmitting {num_transfers} transfers in both directions...")
    try:
        results = await orchestrator.run(num_transfers)

        print("\n" + "=" * 40)
        print("BRIDGE STATE")
        print("=" * 40)
        for key, value in results['bridge_state'].items():
            print(f"  {key}: {value}")

        print(f"\nTransfers:")
        for transfer in results['transfers']:
            print(f"  {transfer['id']}: {transfer['sourceChain']} -> "
                  f"{transfer['destinationChain']} {transfer['amount']} [{transfer['status']}]")

        completed = sum(1 for t in results['transfers']
                        if t['status'] == TransferStatus.COMPLETED.value)
        print(f"\nCompleted {completed}/{num_transfers}, "
              f"{results['events']} status events emitted")

        results_dir = Path(config.results_dir)
        report_path = results_dir / "bridge_demo_report.json"
        save_results(results, report_path)

        perf_report = create_performance_report(orchestrator.performance_monitor)
        perf_path = results_dir / "performance_report.txt"
        with open(perf_path, "w") as f:
            f.write(perf_report)

        total = orchestrator.performance_monitor.get_summary()['total_duration']
        print(f"\nTotal monitored time: {format_duration(total)}")
        print(f"Full results saved to: {report_path}")
        print(f"Performance report: {perf_path}")

        return completed == num_transfers

    except Exception as e:
        logger.exception(f"Demo failed: {e}")
        print(f"\n Demo failed: {e}")
        return False

    finally:
        await orchestrator.close()


def main():
    parser = argparse.ArgumentParser(
        description='Private Zcash <-> Miden Bridge')
    parser.add_argument('--transfers', type=int, default=6,
                        help='Number of demo transfers')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Override the configured log level')
    parser.add_argument('--mode', choices=['demo'], default='demo')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_level, log_dir=config.log_dir)

    if args.mode == 'demo':
        success = asyncio.run(run_demo(config, args.transfers))
        sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
