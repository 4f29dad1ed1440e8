"""Core orchestration: keep this process's registry membership in step with its liveness."""

import math
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

from .config import DEFAULT_HEARTBEAT_INTERVAL, RegistrarConfig
from .heartbeat import ProbeResult, Prober, probe_instance, sweep as sweep_instances
from .identity import Identity, resolve_identity
from .registry import (
    EurekaClient,
    InstanceDescriptor,
    InstanceStatus,
    RegistryError,
    RegistryResponseError,
)
from .scheduler import PeriodicScheduler


JOB_NAME = "registry-health"


@dataclass
class SweepReport:
    """Probe results of one sweep, or the error that prevented it."""
    error: Optional[RegistryError] = None
    results: list[ProbeResult] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.error is not None


@dataclass
class TickReport:
    heartbeat_error: Optional[RegistryError]
    sweep: SweepReport

    @property
    def ok(self) -> bool:
        return self.heartbeat_error is None and not self.sweep.skipped


class RegistryLifecycleManager:
    """Registers, renews, sweeps and deregisters one process.

    Every registry failure is caught at the boundary of the operation that
    hit it, logged, and returned to the caller; nothing is raised into the
    host or the scheduler.  A fresh client is built for every operation.
    """

    def __init__(
        self,
        config: RegistrarConfig,
        identity: Optional[Identity] = None,
        client_factory: Optional[Callable[[], object]] = None,
        probe: Prober = probe_instance,
    ):
        self.config = config
        self.identity = identity or resolve_identity(
            ip_address=config.ip_address,
            host_name=config.host_name,
            target=(config.identity_target, 80),
        )
        self._client_factory = client_factory or (
            lambda: EurekaClient(config.eureka_url, timeout=config.registry_timeout)
        )
        self._probe = probe
        self._scheduler: Optional[PeriodicScheduler] = None
        self._owns_scheduler = False
        self._deregistered = False
        # Set once shutdown begins; ticks after that neither renew nor re-register
        self._stopped = False
        self._last_instance_count = 0
        self.descriptor = InstanceDescriptor(
            host_name=self.identity.host_name,
            ip_address=self.identity.ip_address,
            port=config.port,
            app_name=config.app_name,
            vip_address=config.vip_address or "",
            status=InstanceStatus.STARTING.value,
            data_center=config.data_center,
            lease_renewal_interval=config.heartbeat_interval,
            lease_duration=config.effective_lease_duration,
        )

    @property
    def label(self) -> str:
        return f"{self.descriptor.app_name}/{self.descriptor.instance_id}"

    # -- single-shot operations ---------------------------------------------

    def register(self) -> Optional[RegistryError]:
        self.descriptor.status = InstanceStatus.UP.value
        try:
            self._client_factory().register(self.descriptor)
        except RegistryError as exc:
            print(
                f"[registry] registration of {self.label} with {self.config.eureka_url}"
                f" failed (continuing unregistered): {exc}",
                file=sys.stderr,
            )
            return exc
        self._deregistered = False
        print(
            f"[registry] registered {self.label} at"
            f" {self.descriptor.ip_address}:{self.descriptor.port}",
            file=sys.stderr,
        )
        return None

    def heartbeat(self) -> Optional[RegistryError]:
        """Renew the lease; re-register when the registry has forgotten us.

        Does nothing once :meth:`shutdown` has begun.
        """
        if self._stopped:
            return None
        try:
            self._client_factory().heartbeat(self.descriptor.app_name, self.descriptor.instance_id)
        except RegistryResponseError as exc:
            if exc.status != 404:
                print(f"[heartbeat] {self.label} renewal failed: {exc}", file=sys.stderr)
                return exc
            if self._stopped:
                return None
            print(f"[heartbeat] {self.label} unknown to registry, re-registering", file=sys.stderr)
            return self.register()
        except RegistryError as exc:
            print(f"[heartbeat] {self.label} renewal failed: {exc}", file=sys.stderr)
            return exc
        return None

    def sweep(self) -> SweepReport:
        try:
            applications = self._client_factory().list_applications()
        except RegistryError as exc:
            print(f"[sweep] could not list applications, skipping sweep: {exc}", file=sys.stderr)
            return SweepReport(error=exc)
        self._last_instance_count = sum(len(app.instances) for app in applications)
        results = sweep_instances(
            applications,
            timeout=self.config.probe_timeout,
            workers=self.config.probe_workers,
            probe=self._probe,
        )
        return SweepReport(results=results)

    def tick(self) -> TickReport:
        """One scheduled pass: heartbeat first, then the reachability sweep."""
        if self._stopped:
            print(f"[heartbeat] {self.label} is shut down, skipping tick", file=sys.stderr)
            return TickReport(heartbeat_error=None, sweep=SweepReport())
        heartbeat_error = self.heartbeat()
        return TickReport(heartbeat_error=heartbeat_error, sweep=self.sweep())

    def tick_time_bound(self) -> float:
        """Longest a tick should take, given the instance count of the last sweep.

        Covers heartbeat, a possible re-registration, the application listing
        and one probe timeout per batch of ``probe_workers`` instances.
        Timeouts apply per socket operation, so this is an estimate.
        """
        batches = math.ceil(self._last_instance_count / max(1, self.config.probe_workers))
        return 3 * self.config.registry_timeout + batches * self.config.probe_timeout

    def deregister(self) -> Optional[RegistryError]:
        """Remove this instance using only its (app, host name) key."""
        self.descriptor.status = InstanceStatus.DOWN.value
        try:
            self._client_factory().deregister(self.descriptor.app_name, self.descriptor.instance_id)
        except RegistryError as exc:
            print(f"[registry] warning: deregistration of {self.label} failed: {exc}", file=sys.stderr)
            return exc
        self._deregistered = True
        print(f"[registry] deregistered {self.label}", file=sys.stderr)
        return None

    # -- hosting --------------------------------------------------------------

    def start(self, scheduler: Optional[PeriodicScheduler] = None) -> Optional[RegistryError]:
        """Register and schedule :meth:`tick`; returns the registration error, if any.

        When no scheduler is given the manager creates, starts and later
        stops its own.
        """
        if self._scheduler is not None:
            return None
        self._stopped = False
        error = self.register()
        interval = self.config.heartbeat_interval
        if interval <= 0:
            print(
                f"[heartbeat] interval {interval!r} is not positive,"
                f" using {DEFAULT_HEARTBEAT_INTERVAL}s",
                file=sys.stderr,
            )
            interval = DEFAULT_HEARTBEAT_INTERVAL
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or PeriodicScheduler()
        self._scheduler.add(JOB_NAME, interval, self.tick)
        if self._owns_scheduler:
            self._scheduler.start()
        return error

    def shutdown(self) -> Optional[RegistryError]:
        """Stop heartbeating and deregister. Safe to call more than once.

        A host-supplied scheduler keeps running; only this manager's job is
        removed from it.  An in-flight tick is waited for up to
        :meth:`tick_time_bound`; if it is still running after that it can no
        longer renew or re-register, so deregistration stays final.
        """
        self._stopped = True
        if self._scheduler is not None:
            if self._owns_scheduler:
                self._scheduler.stop(timeout=self.tick_time_bound())
            else:
                self._scheduler.remove(JOB_NAME)
        self._scheduler = None
        if self._deregistered:
            return None
        print(f"[registry] shutting down, deregistering {self.label}", file=sys.stderr)
        return self.deregister()
