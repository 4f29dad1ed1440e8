"""Reachability sweep over every instance known to the registry."""

import sys
import urllib.request
import urllib.error
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .registry import ApplicationView, InstanceDescriptor


DEFAULT_PROBE_TIMEOUT = 10.0


@dataclass
class ProbeResult:
    """Outcome of probing one instance."""
    app_name: str
    host_name: str
    url: str
    reachable: bool
    status: Optional[int] = None
    reason: str = ""


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}s"


def format_probe(result: ProbeResult, timeout: float) -> str:
    label = f"{result.app_name}/{result.host_name}"
    if result.reachable:
        return f"{label} reachable (status {result.status})"
    return f"{label} inaccessible (timeout {_format_seconds(timeout)}): {result.reason}"


def probe_instance(
    app_name: str,
    instance: InstanceDescriptor,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> ProbeResult:
    """GET ``http://{ip}:{port}/`` once.

    Any HTTP answer counts as reachable, including 4xx/5xx; only transport
    errors and timeouts count as inaccessible.
    """
    host = instance.ip_address or instance.host_name
    url = f"http://{host}:{instance.port}/"
    # Bypass http_proxy env vars; siblings live on the internal network.
    opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
    try:
        with opener.open(url, timeout=timeout) as resp:
            return ProbeResult(app_name, instance.host_name, url, True, status=resp.status)
    except urllib.error.HTTPError as exc:
        exc.close()
        return ProbeResult(app_name, instance.host_name, url, True, status=exc.code)
    except (urllib.error.URLError, OSError) as exc:
        reason = getattr(exc, "reason", exc)
        return ProbeResult(app_name, instance.host_name, url, False, reason=str(reason))


Prober = Callable[[str, InstanceDescriptor, float], ProbeResult]


def _probe_and_report(
    probe: Prober, app_name: str, instance: InstanceDescriptor, timeout: float,
) -> ProbeResult:
    try:
        result = probe(app_name, instance, timeout)
        if not isinstance(result, ProbeResult):
            raise TypeError(f"prober returned {type(result).__name__}, not ProbeResult")
    except Exception as exc:
        result = ProbeResult(
            app_name, instance.host_name,
            f"http://{instance.ip_address or instance.host_name}:{instance.port}/",
            False, reason=f"probe error: {exc}",
        )
    print(f"[sweep] {format_probe(result, timeout)}", file=sys.stderr)
    return result


def sweep(
    applications: Sequence[ApplicationView],
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    workers: int = 8,
    probe: Prober = probe_instance,
) -> list[ProbeResult]:
    """Probe every instance of every application exactly once.

    Probes run on a bounded thread pool, each with its own timeout, so a
    hanging instance only occupies its own worker.  Results are returned in
    registry order; log lines appear as probes complete.
    """
    targets = [(app.name, inst) for app in applications for inst in app.instances]
    if not targets:
        return []

    with ThreadPoolExecutor(
        max_workers=max(1, min(workers, len(targets))),
        thread_name_prefix="registrar-probe",
    ) as pool:
        futures = [
            pool.submit(_probe_and_report, probe, name, inst, timeout)
            for name, inst in targets
        ]
        return [f.result() for f in futures]
