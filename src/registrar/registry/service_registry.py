#!/usr/bin/env python3
"""
Discovery Registry Model, Client and Local Server

This module provides:
- InstanceDescriptor / ApplicationView: the records exchanged with the registry
- RegistryError and its subclasses: failures of a registry operation
- EurekaClient: thin HTTP client for the Eureka REST (JSON) API
- InMemoryRegistry: a dict-backed registry with lease tracking
- start_registry_server: serves the Eureka REST subset over an InMemoryRegistry
  from a daemon thread (local development and integration tests)
"""

import json
import threading
import time
import urllib.parse
import urllib.request
import urllib.error
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, List, Optional, Any
from dataclasses import dataclass, field, replace
from enum import Enum


class InstanceStatus(Enum):
    """Instance status as understood by the registry"""
    UP = "UP"
    DOWN = "DOWN"
    STARTING = "STARTING"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"
    UNKNOWN = "UNKNOWN"


class DataCenterKind(Enum):
    """Data center flavour advertised in ``dataCenterInfo``"""
    OWN = "MyOwn"
    AMAZON = "Amazon"
    NETFLIX = "Netflix"


_DEFAULT_DATA_CENTER_CLASS = "com.netflix.appinfo.InstanceInfo$DefaultDataCenterInfo"
_DATA_CENTER_CLASSES = {
    DataCenterKind.AMAZON.value: "com.netflix.appinfo.AmazonInfo",
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RegistryError(Exception):
    """A registry operation did not complete."""

    def __init__(self, operation: str, message: str):
        super().__init__(message)
        self.operation = operation


class TransientRegistryError(RegistryError):
    """The registry could not be reached (connection refused, timeout, DNS)."""


class RegistryResponseError(RegistryError):
    """The registry answered with a non-2xx status or an unreadable body."""

    def __init__(self, operation: str, status: int, message: str):
        super().__init__(operation, message)
        self.status = status


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def _as_list(value: Any) -> List[Any]:
    # Eureka collapses single-element arrays into a bare object
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_port(value: Any) -> int:
    if isinstance(value, dict):
        value = value.get("$", 0)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class InstanceDescriptor:
    """One running service process as seen by the registry.

    The ``(app_name, host_name)`` pair is the registry key; only ``status``
    is expected to change after construction.
    """
    host_name: str
    ip_address: str
    port: int
    app_name: str
    vip_address: str = ""
    status: str = InstanceStatus.STARTING.value
    data_center: str = DataCenterKind.OWN.value
    lease_renewal_interval: int = 30
    lease_duration: int = 90

    def __post_init__(self):
        self.app_name = self.app_name.upper()
        if not self.vip_address:
            self.vip_address = self.app_name

    @property
    def instance_id(self) -> str:
        return self.host_name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the Eureka JSON instance document."""
        return {
            "instanceId": self.instance_id,
            "hostName": self.host_name,
            "app": self.app_name,
            "ipAddr": self.ip_address,
            "vipAddress": self.vip_address,
            "status": self.status,
            "port": {"$": self.port, "@enabled": "true"},
            "securePort": {"$": 443, "@enabled": "false"},
            "dataCenterInfo": {
                "@class": _DATA_CENTER_CLASSES.get(self.data_center, _DEFAULT_DATA_CENTER_CLASS),
                "name": self.data_center,
            },
            "leaseInfo": {
                "renewalIntervalInSecs": self.lease_renewal_interval,
                "durationInSecs": self.lease_duration,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InstanceDescriptor':
        """Create from a Eureka instance document."""
        lease = data.get("leaseInfo") or {}
        data_center = data.get("dataCenterInfo") or {}
        return cls(
            host_name=data.get("hostName") or data.get("instanceId") or "",
            ip_address=data.get("ipAddr") or "",
            port=_parse_port(data.get("port")),
            app_name=data.get("app") or "",
            vip_address=data.get("vipAddress") or "",
            status=data.get("status") or InstanceStatus.UNKNOWN.value,
            data_center=data_center.get("name") or DataCenterKind.OWN.value,
            lease_renewal_interval=int(lease.get("renewalIntervalInSecs", 30)),
            lease_duration=int(lease.get("durationInSecs", 90)),
        )


@dataclass
class ApplicationView:
    """Read-only snapshot of one application and its instances."""
    name: str
    instances: List[InstanceDescriptor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "instance": [inst.to_dict() for inst in self.instances],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationView':
        return cls(
            name=data.get("name", ""),
            instances=[InstanceDescriptor.from_dict(d) for d in _as_list(data.get("instance"))],
        )


def parse_applications(payload: Any) -> List[ApplicationView]:
    """Parse a ``GET /apps`` response body into application views."""
    if not isinstance(payload, dict):
        return []
    apps = payload.get("applications") or {}
    return [ApplicationView.from_dict(a) for a in _as_list(apps.get("application"))]


# ---------------------------------------------------------------------------
# HTTP client (Eureka REST API)
# ---------------------------------------------------------------------------

class EurekaClient:
    """Thin HTTP client for a Eureka server.

    *base_url* is the service URL including its context path, e.g.
    ``http://localhost:8761/eureka``.  Every operation raises a
    :class:`RegistryError` subclass on failure; callers decide the policy.
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        # Registry traffic stays inside the cluster; ignore http_proxy.
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

    @property
    def base_url(self) -> str:
        return self._base

    def _request(self, operation: str, method: str, path: str,
                 payload: Optional[Dict[str, Any]] = None) -> bytes:
        url = f"{self._base}{path}"
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode()
            headers["Content-Type"] = "application/json"
        elif method in ("POST", "PUT"):
            data = b""
        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with self._opener.open(request, timeout=self._timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as exc:
            exc.close()
            raise RegistryResponseError(
                operation, exc.code, f"{method} {url} returned {exc.code}",
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            raise TransientRegistryError(
                operation, f"{method} {url} failed: {reason}",
            ) from exc

    @staticmethod
    def _path(app_name: str, instance_id: Optional[str] = None) -> str:
        path = f"/apps/{urllib.parse.quote(app_name.upper(), safe='')}"
        if instance_id is not None:
            path += f"/{urllib.parse.quote(instance_id, safe='')}"
        return path

    def register(self, descriptor: InstanceDescriptor) -> None:
        self._request(
            "register", "POST", self._path(descriptor.app_name),
            payload={"instance": descriptor.to_dict()},
        )

    def heartbeat(self, app_name: str, instance_id: str) -> None:
        self._request("heartbeat", "PUT", self._path(app_name, instance_id))

    def deregister(self, app_name: str, instance_id: str) -> None:
        self._request("deregister", "DELETE", self._path(app_name, instance_id))

    def list_applications(self) -> List[ApplicationView]:
        body = self._request("list_applications", "GET", "/apps")
        try:
            payload = json.loads(body.decode()) if body else {}
            return parse_applications(payload)
        except (ValueError, TypeError, AttributeError) as exc:
            raise RegistryResponseError(
                "list_applications", 200, f"unreadable applications document: {exc}",
            ) from exc


# ---------------------------------------------------------------------------
# In-memory registry (backs the local registry server)
# ---------------------------------------------------------------------------

class InMemoryRegistry:
    """Thread-safe, dict-backed registry with per-instance leases."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._apps: Dict[str, Dict[str, InstanceDescriptor]] = {}
        self._renewed: Dict[tuple[str, str], float] = {}

    def register(self, descriptor: InstanceDescriptor) -> bool:
        with self._lock:
            app = descriptor.app_name.upper()
            self._apps.setdefault(app, {})[descriptor.instance_id] = replace(descriptor)
            self._renewed[(app, descriptor.instance_id)] = self._clock()
        return True

    def heartbeat(self, app_name: str, instance_id: str) -> bool:
        key = (app_name.upper(), instance_id)
        with self._lock:
            if key not in self._renewed:
                return False
            self._renewed[key] = self._clock()
        return True

    def deregister(self, app_name: str, instance_id: str) -> bool:
        with self._lock:
            return self._remove(app_name.upper(), instance_id)

    def _remove(self, app: str, instance_id: str) -> bool:
        # Caller holds self._lock
        instances = self._apps.get(app)
        if not instances or instance_id not in instances:
            return False
        del instances[instance_id]
        del self._renewed[(app, instance_id)]
        if not instances:
            del self._apps[app]
        return True

    def get_application(self, app_name: str) -> Optional[ApplicationView]:
        with self._lock:
            instances = self._apps.get(app_name.upper())
            if not instances:
                return None
            return ApplicationView(
                name=app_name.upper(),
                instances=[replace(i) for i in instances.values()],
            )

    def list_applications(self) -> List[ApplicationView]:
        with self._lock:
            return [
                ApplicationView(name=app, instances=[replace(i) for i in instances.values()])
                for app, instances in sorted(self._apps.items())
            ]

    def instance_count(self) -> int:
        with self._lock:
            return len(self._renewed)

    def evict_expired(self) -> int:
        """Drop instances whose lease ran out since their last renewal."""
        with self._lock:
            now = self._clock()
            expired = [
                (app, iid) for (app, iid), renewed in self._renewed.items()
                if now - renewed > self._apps[app][iid].lease_duration
            ]
            for app, iid in expired:
                self._remove(app, iid)
        return len(expired)


# ---------------------------------------------------------------------------
# HTTP handler (Eureka REST subset served from the local registry)
# ---------------------------------------------------------------------------

def _make_handler(registry: InMemoryRegistry, context_path: str):
    """Create a handler class bound to the given registry instance."""
    prefix = "/" + context_path.strip("/") if context_path.strip("/") else ""

    class RegistryHTTPHandler(BaseHTTPRequestHandler):

        def log_message(self, format, *args):
            # Silence default stderr logging
            pass

        def _json_response(self, data: Any, status: int = 200):
            body = json.dumps(data).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _empty_response(self, status: int):
            self.send_response(status)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def _route(self) -> Optional[List[str]]:
            path = urllib.parse.urlparse(self.path).path
            if prefix:
                if not path.startswith(prefix + "/"):
                    return None
                path = path[len(prefix):]
            parts = [urllib.parse.unquote(p) for p in path.strip("/").split("/")]
            if not parts or parts[0] != "apps" or len(parts) > 3:
                return None
            return parts[1:]

        def do_GET(self):
            parts = self._route()
            if parts == []:
                apps = registry.list_applications()
                self._json_response({"applications": {
                    "versions__delta": "1",
                    "application": [a.to_dict() for a in apps],
                }})
            elif parts is not None and len(parts) == 1:
                app = registry.get_application(parts[0])
                if app:
                    self._json_response({"application": app.to_dict()})
                else:
                    self._empty_response(404)
            else:
                self._empty_response(404)

        def do_POST(self):
            parts = self._route()
            if parts is None or len(parts) != 1:
                self._empty_response(404)
                return
            length = int(self.headers.get("Content-Length") or 0)
            try:
                data = json.loads(self.rfile.read(length).decode())
                descriptor = InstanceDescriptor.from_dict(data["instance"])
            except (ValueError, KeyError, TypeError):
                self._empty_response(400)
                return
            descriptor.app_name = parts[0].upper()
            if not descriptor.host_name:
                self._empty_response(400)
                return
            registry.register(descriptor)
            self._empty_response(204)

        def do_PUT(self):
            parts = self._route()
            if parts is not None and len(parts) == 2 and registry.heartbeat(*parts):
                self._empty_response(200)
            else:
                self._empty_response(404)

        def do_DELETE(self):
            parts = self._route()
            if parts is not None and len(parts) == 2 and registry.deregister(*parts):
                self._empty_response(200)
            else:
                self._empty_response(404)

    return RegistryHTTPHandler


def start_registry_server(
    registry: InMemoryRegistry,
    host: str = "0.0.0.0",
    port: int = 8761,
    context_path: str = "/eureka",
) -> ThreadingHTTPServer:
    """Start a ThreadingHTTPServer in a daemon thread and return the server."""
    handler = _make_handler(registry, context_path)
    server = ThreadingHTTPServer((host, port), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server
