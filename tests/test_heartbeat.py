"""Tests for the reachability probe and sweep."""

import threading
import time

from registrar.heartbeat import ProbeResult, format_probe, probe_instance, sweep
from registrar.registry import ApplicationView, InstanceDescriptor


def _instance(host, port, ip="127.0.0.1", app="ORDERS"):
    return InstanceDescriptor(host_name=host, ip_address=ip, port=port, app_name=app)


def _ok_probe(app_name, instance, timeout):
    return ProbeResult(app_name, instance.host_name, "", True, status=200)


def test_probe_counts_any_http_status_as_reachable(http_target):
    port = http_target(503)
    result = probe_instance("ORDERS", _instance("A", port), timeout=5)
    assert result.reachable
    assert result.status == 503
    assert result.url == f"http://127.0.0.1:{port}/"


def test_probe_refused_connection_is_inaccessible(closed_port):
    result = probe_instance("ORDERS", _instance("A", closed_port), timeout=2)
    assert not result.reachable
    assert result.status is None
    assert result.reason


def test_probe_uses_host_name_when_ip_missing(http_target):
    port = http_target(200)
    result = probe_instance("ORDERS", _instance("127.0.0.1", port, ip=""), timeout=5)
    assert result.reachable
    assert result.url == f"http://127.0.0.1:{port}/"


def test_format_probe():
    ok = ProbeResult("ORDERS", "A", "", True, status=200)
    bad = ProbeResult("ORDERS", "B", "", False, reason="timed out")
    assert format_probe(ok, 10.0) == "ORDERS/A reachable (status 200)"
    assert format_probe(bad, 10.0) == "ORDERS/B inaccessible (timeout 10s): timed out"


def test_sweep_probes_every_instance_once():
    apps = [
        ApplicationView("ORDERS", [_instance("A", 1), _instance("B", 2)]),
        ApplicationView("BILLING", [_instance("C", 3)]),
        ApplicationView("EMPTY", []),
    ]
    calls = []
    lock = threading.Lock()

    def _probe(app_name, instance, timeout):
        with lock:
            calls.append((app_name, instance.host_name))
        return _ok_probe(app_name, instance, timeout)

    results = sweep(apps, timeout=1, probe=_probe)
    assert sorted(calls) == [("BILLING", "C"), ("ORDERS", "A"), ("ORDERS", "B")]
    assert [(r.app_name, r.host_name) for r in results] == [
        ("ORDERS", "A"), ("ORDERS", "B"), ("BILLING", "C"),
    ]


def test_sweep_with_no_instances():
    assert sweep([]) == []


def test_hanging_probe_does_not_delay_the_others():
    others_done = threading.Event()
    finished = []
    lock = threading.Lock()

    def _probe(app_name, instance, timeout):
        if instance.host_name == "B":
            # Only completes in time if A and C were probed meanwhile
            reachable = others_done.wait(5)
            return ProbeResult(app_name, "B", "", reachable, status=200 if reachable else None)
        with lock:
            finished.append(instance.host_name)
            if len(finished) == 2:
                others_done.set()
        return _ok_probe(app_name, instance, timeout)

    apps = [ApplicationView("ORDERS", [_instance("B", 2), _instance("A", 1), _instance("C", 3)])]
    results = sweep(apps, timeout=10, workers=3, probe=_probe)
    assert all(r.reachable for r in results)


def test_failing_probe_is_reported_and_sweep_continues(capsys):
    def _probe(app_name, instance, timeout):
        if instance.host_name == "A":
            raise RuntimeError("boom")
        return _ok_probe(app_name, instance, timeout)

    apps = [ApplicationView("ORDERS", [_instance("A", 1), _instance("B", 2)])]
    results = sweep(apps, timeout=10, probe=_probe)
    assert [r.reachable for r in results] == [False, True]
    assert "boom" in results[0].reason
    err = capsys.readouterr().err
    assert "ORDERS/A inaccessible" in err
    assert "ORDERS/B reachable (status 200)" in err


def test_orders_scenario_timeout_on_one_instance(http_target, silent_port, capsys):
    apps = [ApplicationView("ORDERS", [
        _instance("A", http_target(200)),
        _instance("B", silent_port),
    ])]
    start = time.monotonic()
    results = sweep(apps, timeout=0.5)
    elapsed = time.monotonic() - start

    assert [(r.host_name, r.reachable) for r in results] == [("A", True), ("B", False)]
    assert results[0].status == 200
    assert elapsed < 5
    err = capsys.readouterr().err
    assert "ORDERS/A reachable (status 200)" in err
    assert "ORDERS/B inaccessible (timeout 0.5s)" in err


def test_prober_returning_wrong_type_is_reported_as_failure(capsys):
    def _probe(app_name, instance, timeout):
        if instance.host_name == "A":
            return None
        return _ok_probe(app_name, instance, timeout)

    apps = [ApplicationView("ORDERS", [_instance("A", 1), _instance("B", 2)])]
    results = sweep(apps, timeout=10, probe=_probe)
    assert [r.reachable for r in results] == [False, True]
    assert "NoneType" in results[0].reason
    assert "ORDERS/B reachable (status 200)" in capsys.readouterr().err
