"""Eureka registration, heartbeat and reachability sweep for one process."""

from .lifecycle import RegistryLifecycleManager, SweepReport, TickReport

__version__ = '0.1.0'
__all__ = [
    'RegistryLifecycleManager',
    'SweepReport',
    'TickReport',
]
