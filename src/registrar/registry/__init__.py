"""
Discovery Registry

This package provides:
1. InstanceDescriptor / ApplicationView: records exchanged with the registry
2. EurekaClient: HTTP client for the Eureka REST API
3. InMemoryRegistry: dict-backed registry with lease tracking
4. start_registry_server: serves the Eureka REST subset in a daemon thread
"""

from .service_registry import (
    ApplicationView,
    DataCenterKind,
    EurekaClient,
    InMemoryRegistry,
    InstanceDescriptor,
    InstanceStatus,
    RegistryError,
    RegistryResponseError,
    TransientRegistryError,
    parse_applications,
    start_registry_server,
)

__all__ = [
    'ApplicationView',
    'DataCenterKind',
    'EurekaClient',
    'InMemoryRegistry',
    'InstanceDescriptor',
    'InstanceStatus',
    'RegistryError',
    'RegistryResponseError',
    'TransientRegistryError',
    'parse_applications',
    'start_registry_server',
]
