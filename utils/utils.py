"""
Utilities for the Private Bridge
Logging setup, operation timing, identifiers and result export
"""

import json
import logging
import platform
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import psutil


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    cpu_percent: float
    memory_mb: float
    timestamp: float
    additional_data: Dict[str, Any] = field(default_factory=dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None,
                  log_dir: Path = Path("logs")):
    """Install file and console handlers on the root logger"""
    if log_file is None:
        log_file = Path(log_dir) / \
            f"bridge_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized. Log file: {log_file}")

    return logger


class PerformanceMonitor:
    """Records duration, CPU and memory for named operations"""

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self.process = psutil.Process()

    def start_operation(self, operation_name: str) -> 'OperationContext':
        """Start monitoring an operation - returns context manager"""
        return OperationContext(self, operation_name)

    def record_metric(self, metric: PerformanceMetrics):
        self.metrics.append(metric)

    def get_summary(self) -> Dict[str, Any]:
        """Per-operation statistics"""
        if not self.metrics:
            return {
                'total_operations': 0,
                'total_duration': 0.0,
                'operations': {}
            }

        operation_groups: Dict[str, List[PerformanceMetrics]] = {}
        for metric in self.metrics:
            operation_groups.setdefault(metric.operation, []).append(metric)

        summary = {
            'total_operations': len(self.metrics),
            'operations': {}
        }

        for op_name, metrics in operation_groups.items():
            durations = np.array([m.duration_seconds for m in metrics])
            cpu_usages = [m.cpu_percent for m in metrics if m.cpu_percent > 0]
            memory_usages = [m.memory_mb for m in metrics if m.memory_mb > 0]
            failures = sum(1 for m in metrics
                           if m.additional_data.get('exception'))
            total = float(durations.sum())

            summary['operations'][op_name] = {
                'count': len(metrics),
                'failures': failures,
                'total_duration': total,
                'avg_duration': float(durations.mean()),
                'p95_duration': float(np.percentile(durations, 95)),
                'min_duration': float(durations.min()),
                'max_duration': float(durations.max()),
                'std_duration': float(durations.std()) if len(durations) > 1 else 0.0,
                'avg_cpu_percent': float(np.mean(cpu_usages)) if cpu_usages else 0.0,
                'avg_memory_mb': float(np.mean(memory_usages)) if memory_usages else 0.0,
                'peak_memory_mb': max(memory_usages) if memory_usages else 0.0,
                'throughput_ops_per_sec': len(metrics) / total if total > 0 else 0.0
            }

        summary['total_duration'] = sum(
            op_data['total_duration']
            for op_data in summary['operations'].values()
        )

        return summary

    def reset(self):
        self.metrics.clear()


class OperationContext:
    """Context manager for performance monitoring"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self.start_time = 0.0
        self.start_memory = 0.0

    def _sample(self):
        try:
            cpu = self.monitor.process.cpu_percent()
            memory = self.monitor.process.memory_info().rss / 1024 / 1024
        except psutil.Error as e:
            logging.debug(f"Performance monitoring error: {e}")
            return 0.0, 0.0
        return cpu, memory

    def __enter__(self):
        self.start_time = time.time()
        # First cpu_percent() call primes the counter for the exit sample
        _, self.start_memory = self._sample()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        end_cpu, end_memory = self._sample()

        self.monitor.record_metric(PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            cpu_percent=end_cpu,
            memory_mb=max(self.start_memory, end_memory),
            timestamp=self.start_time,
            additional_data={'exception': exc_type is not None}
        ))
        return False


def get_system_info() -> Dict[str, Any]:
    info = {
        'platform': platform.platform(),
        'python_version': platform.python_version(),
        'machine': platform.machine(),
        'timestamp': datetime.now().isoformat()
    }

    try:
        vm = psutil.virtual_memory()
        info.update({
            'cpu_count_logical': psutil.cpu_count(logical=True),
            'total_memory_gb': round(vm.total / 1024 / 1024 / 1024, 2),
            'memory_percent_used': vm.percent,
        })
    except psutil.Error as e:
        logging.debug(f"System info error: {e}")

    return info


def generate_secure_id(prefix: str = "", length: int = 16) -> str:
    """Millisecond timestamp plus random hex, with optional prefix"""
    random_part = secrets.token_hex(length // 2)
    timestamp = int(time.time() * 1000)

    if prefix:
        return f"{prefix}_{timestamp}_{random_part}"
    return f"{timestamp}_{random_part}"


def to_serializable(obj: Any) -> Any:
    """JSON-safe form; integers stay integers, never floats"""
    if hasattr(obj, 'to_dict'):
        return to_serializable(obj.to_dict())
    if hasattr(obj, '__dataclass_fields__'):
        return to_serializable(asdict(obj))
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_serializable(item) for item in obj]
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Write results as JSON plus a human-readable summary beside it"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    enhanced_results = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
            'file_path': str(filepath)
        },
        'data': to_serializable(results)
    }

    with open(filepath, 'w') as f:
        json.dump(enhanced_results, f, indent=2, default=str)

    summary_path = filepath.parent / f"{filepath.stem}_summary.txt"
    with open(summary_path, 'w') as f:
        f.write(create_results_summary(results))

    logging.info(f"Results saved to {filepath}")
    logging.info(f"Summary saved to {summary_path}")


def create_results_summary(results: Dict[str, Any]) -> str:
    summary = []
    summary.append("=" * 80)
    summary.append("PRIVATE BRIDGE - RESULTS SUMMARY")
    summary.append("=" * 80)
    summary.append(
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    summary.append("")

    state = results.get('bridge_state')
    if isinstance(state, dict):
        summary.append("BRIDGE STATE:")
        for key, value in state.items():
            summary.append(f"  {key}: {value}")
        summary.append("")

    transfers = results.get('transfers')
    if isinstance(transfers, list):
        summary.append(f"TRANSFERS ({len(transfers)}):")
        for transfer in transfers:
            if isinstance(transfer, dict):
                summary.append(
                    f"  {transfer.get('id')}: {transfer.get('sourceChain')} -> "
                    f"{transfer.get('destinationChain')} "
                    f"{transfer.get('amount')} [{transfer.get('status')}]")
        summary.append("")

    summary.append("=" * 80)
    return "\n".join(summary)


def create_performance_report(metrics: PerformanceMonitor) -> str:
    summary = metrics.get_summary()

    report = []
    report.append("=" * 80)
    report.append("PRIVATE BRIDGE - PERFORMANCE REPORT")
    report.append("=" * 80)
    report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append(f"Total Operations: {summary.get('total_operations', 0)}")
    report.append(
        f"Total Duration: {format_duration(summary.get('total_duration', 0.0))}")
    report.append("")

    if summary['operations']:
        report.append("OPERATION BREAKDOWN:")
        report.append("-" * 60)

        for op_name, op_data in summary['operations'].items():
            report.append(f"\n{op_name.upper()}:")
            report.append(f"  Executions: {op_data['count']}")
            report.append(f"  Failures: {op_data['failures']}")
            report.append(f"  Total Time: {op_data['total_duration']:.3f}s")
            report.append(f"  Average Time: {op_data['avg_duration']:.4f}s")
            report.append(f"  P95 Time: {op_data['p95_duration']:.4f}s")
            report.append(
                f"  Min/Max Time: {op_data['min_duration']:.4f}s / {op_data['max_duration']:.4f}s")
            report.append(f"  Std Deviation: {op_data['std_duration']:.4f}s")
            report.append(
                f"  Throughput: {op_data['throughput_ops_per_sec']:.2f} ops/sec")

            if op_data['peak_memory_mb'] > 0:
                report.append(
                    f"  Peak Memory: {op_data['peak_memory_mb']:.1f} MB")
    else:
        report.append("No performance data available.")

    report.append("")
    report.append("=" * 80)
    return "\n".join(report)


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds*1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.1f}s"


__all__ = [
    'PerformanceMetrics',
    'PerformanceMonitor',
    'OperationContext',
    'setup_logging',
    'get_system_info',
    'generate_secure_id',
    'to_serializable',
    'save_results',
    'create_results_summary',
    'create_performance_report',
    'format_duration',
]
