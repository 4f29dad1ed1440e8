"""Resolve the address and host name this process advertises."""

import socket
import sys
from dataclasses import dataclass
from typing import Optional


LOOPBACK_IP = "127.0.0.1"
PLACEHOLDER_HOSTNAME = "localhost"
DEFAULT_TARGET = ("8.8.8.8", 80)


@dataclass(frozen=True)
class Identity:
    ip_address: str
    host_name: str


def outbound_ip(target: tuple[str, int] = DEFAULT_TARGET) -> str:
    """Return the local address the OS would use to reach *target*.

    Connecting a UDP socket only consults the routing table, no packet is
    sent.  Falls back to the loopback address when there is no route.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(target)
            ip = sock.getsockname()[0]
    except OSError as exc:
        print(
            f"[identity] could not detect outbound IP ({exc}), using {LOOPBACK_IP}",
            file=sys.stderr,
        )
        return LOOPBACK_IP
    if not ip or ip == "0.0.0.0":
        print(f"[identity] no routable local address, using {LOOPBACK_IP}", file=sys.stderr)
        return LOOPBACK_IP
    return ip


def local_hostname() -> str:
    try:
        name = socket.gethostname()
    except OSError as exc:
        print(f"[identity] could not read host name ({exc})", file=sys.stderr)
        return PLACEHOLDER_HOSTNAME
    return name or PLACEHOLDER_HOSTNAME


def resolve_identity(
    ip_address: Optional[str] = None,
    host_name: Optional[str] = None,
    target: tuple[str, int] = DEFAULT_TARGET,
) -> Identity:
    """Resolve this process's identity; explicit values skip detection."""
    return Identity(
        ip_address=ip_address or outbound_ip(target),
        host_name=host_name or local_hostname(),
    )
