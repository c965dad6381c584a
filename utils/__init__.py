"""Utilities for the private bridge."""

from .utils import (
    setup_logging,
    save_results,
    to_serializable,
    generate_secure_id,
    PerformanceMonitor,
    create_performance_report,
    format_duration,
    get_system_info
)

__all__ = [
    'setup_logging',
    'save_results',
    'to_serializable',
    'generate_secure_id',
    'PerformanceMonitor',
    'create_performance_report',
    'format_duration',
    'get_system_info'
]
