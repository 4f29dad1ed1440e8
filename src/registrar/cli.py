"""CLI entry point for registrar."""

import argparse
import json
import signal
import sys
import threading

from .config import RegistrarConfig, apply_env, config_to_yaml, load_config, merge_cli_args
from .identity import resolve_identity
from .lifecycle import RegistryLifecycleManager
from .registry import EurekaClient, InMemoryRegistry, RegistryError, start_registry_server
from .scheduler import PeriodicScheduler


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add config flags shared by every subcommand."""
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument(
        "--eureka-url", type=str, dest="eureka_url",
        help="Eureka service URL including context path (env: EUREKA_URL)",
    )
    parser.add_argument(
        "--app", type=str, dest="app_name",
        help="Application name to register under (env: EUREKA_APP)",
    )
    parser.add_argument("--port", type=int, help="Advertised service port (env: PORT)")
    parser.add_argument(
        "--vip-address", type=str, dest="vip_address",
        help="Virtual address (default: the application name)",
    )
    parser.add_argument("--host-name", type=str, dest="host_name", help="Override detected host name")
    parser.add_argument("--ip-address", type=str, dest="ip_address", help="Override detected IP address")
    parser.add_argument(
        "--heartbeat-interval", type=int, dest="heartbeat_interval",
        help="Seconds between heartbeat/sweep ticks (default: 300)",
    )
    parser.add_argument(
        "--probe-timeout", type=float, dest="probe_timeout",
        help="Per-instance reachability probe timeout in seconds (default: 10)",
    )
    parser.add_argument(
        "--probe-workers", type=int, dest="probe_workers",
        help="Concurrent reachability probes (default: 8)",
    )


def _build_config(args) -> RegistrarConfig:
    """Build a RegistrarConfig from defaults, config file, environment and CLI."""
    if getattr(args, "config", None):
        config = load_config(args.config)
    else:
        config = RegistrarConfig()
    apply_env(config)
    merge_cli_args(config, args)
    return config


def _exit_on_error(error) -> None:
    if error is not None:
        sys.exit(1)


def cmd_run(args) -> None:
    """Register, heartbeat and sweep until SIGINT/SIGTERM, then deregister."""
    config = _build_config(args)
    manager = RegistryLifecycleManager(config)
    stop = threading.Event()

    def _handle_signal(signum, frame):
        print(f"[registry] received {signal.Signals(signum).name}", file=sys.stderr)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    manager.start()
    print(
        f"[registry] heartbeat every {config.heartbeat_interval}s against {config.eureka_url}",
        file=sys.stderr,
    )
    try:
        while not stop.wait(1.0):
            pass
    finally:
        manager.shutdown()


def cmd_register(args) -> None:
    manager = RegistryLifecycleManager(_build_config(args))
    _exit_on_error(manager.register())


def cmd_deregister(args) -> None:
    manager = RegistryLifecycleManager(_build_config(args))
    _exit_on_error(manager.deregister())


def cmd_tick(args) -> None:
    manager = RegistryLifecycleManager(_build_config(args))
    report = manager.tick()
    if not report.ok:
        sys.exit(1)


def _format_applications(applications, fmt: str) -> str:
    """Format a list of ApplicationView objects for output."""
    if fmt == "json":
        return json.dumps([a.to_dict() for a in applications], indent=2)
    lines = []
    for app in applications:
        lines.append(app.name)
        for inst in app.instances:
            lines.append(f"  {inst.host_name}  {inst.ip_address}:{inst.port}  {inst.status}")
    return "\n".join(lines) if lines else "(no applications)"


def cmd_apps(args) -> None:
    config = _build_config(args)
    client = EurekaClient(config.eureka_url, timeout=config.registry_timeout)
    try:
        applications = client.list_applications()
    except RegistryError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    print(_format_applications(applications, args.format))


def cmd_identity(args) -> None:
    config = _build_config(args)
    identity = resolve_identity(
        ip_address=config.ip_address,
        host_name=config.host_name,
        target=(config.identity_target, 80),
    )
    print(f"{identity.host_name}  {identity.ip_address}")


def cmd_config(args) -> None:
    print(config_to_yaml(_build_config(args)), end="")


def cmd_serve_registry(args) -> None:
    """Run the local Eureka-compatible registry until interrupted."""
    registry = InMemoryRegistry()
    server = start_registry_server(registry, host=args.host, port=args.port)
    print(f"Registry server listening on {args.host}:{args.port}/eureka", file=sys.stderr)

    def _evict() -> None:
        count = registry.evict_expired()
        if count:
            print(f"[registry] evicted {count} expired instance(s)", file=sys.stderr)

    scheduler = PeriodicScheduler()
    scheduler.add("evict-expired", args.eviction_interval, _evict)
    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
        server.shutdown()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="registrar",
        description="Eureka registration, heartbeat and reachability sweep",
    )
    subparsers = parser.add_subparsers(dest="command")

    # run
    run_parser = subparsers.add_parser("run", help="Register and heartbeat until stopped")
    _add_common_args(run_parser)
    run_parser.set_defaults(func=cmd_run)

    # register / deregister / tick
    reg_parser = subparsers.add_parser("register", help="Register this instance once")
    _add_common_args(reg_parser)
    reg_parser.set_defaults(func=cmd_register)

    dereg_parser = subparsers.add_parser("deregister", help="Deregister this instance once")
    _add_common_args(dereg_parser)
    dereg_parser.set_defaults(func=cmd_deregister)

    tick_parser = subparsers.add_parser("tick", help="Run one heartbeat and reachability sweep")
    _add_common_args(tick_parser)
    tick_parser.set_defaults(func=cmd_tick)

    # apps
    apps_parser = subparsers.add_parser("apps", help="List registered applications")
    _add_common_args(apps_parser)
    apps_parser.add_argument(
        "--format", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )
    apps_parser.set_defaults(func=cmd_apps)

    # identity / config
    identity_parser = subparsers.add_parser("identity", help="Show the detected host name and IP")
    _add_common_args(identity_parser)
    identity_parser.set_defaults(func=cmd_identity)

    config_parser = subparsers.add_parser("config", help="Print the effective configuration")
    _add_common_args(config_parser)
    config_parser.set_defaults(func=cmd_config)

    # serve-registry
    serve_parser = subparsers.add_parser(
        "serve-registry", help="Run a local Eureka-compatible registry",
    )
    serve_parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8761, help="Listen port (default: 8761)")
    serve_parser.add_argument(
        "--eviction-interval", type=float, default=60.0, dest="eviction_interval",
        help="Seconds between expired-lease sweeps (default: 60)",
    )
    serve_parser.set_defaults(func=cmd_serve_registry)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
