############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# test_host.py: Unit tests for the procfs host reader
#
############################################################

"""Unit tests for HostMonitor."""

import pytest

from temper.core.host import HostMonitor, HostSnapshot

MEMINFO = """\
MemTotal:       263842812 kB
MemFree:        10292612 kB
MemAvailable:   201562204 kB
Buffers:         1203424 kB
"""


@pytest.fixture
def proc(tmp_path):
    (tmp_path / "stat").write_text("cpu  100 0 100 800 0 0 0 0 0 0\ncpu0 50 0 50 400 0 0 0 0 0 0\n")
    (tmp_path / "meminfo").write_text(MEMINFO)
    (tmp_path / "loadavg").write_text("1.25 0.80 0.55 2/1234 5678\n")
    (tmp_path / "uptime").write_text("86400.57 172000.12\n")
    return tmp_path


def test_reads_memory_load_and_uptime(proc):
    snap = HostMonitor(str(proc)).update()
    assert snap.mem_total == 263842812 * 1024
    assert snap.mem_available == 201562204 * 1024
    assert (snap.load_avg_1m, snap.load_avg_5m, snap.load_avg_15m) == (1.25, 0.80, 0.55)
    assert snap.uptime == 86400


def test_cpu_usage_from_delta(proc):
    monitor = HostMonitor(str(proc))
    # +100 busy, +100 idle since the priming read
    (proc / "stat").write_text("cpu  150 0 150 900 0 0 0 0 0 0\n")
    snap = monitor.update()
    assert snap.cpu_usage_percent == pytest.approx(50.0)
    assert monitor.get_snapshot() == snap


def test_cpu_usage_kept_without_progress(proc):
    monitor = HostMonitor(str(proc))
    # Only busy time advanced, then nothing at all
    (proc / "stat").write_text("cpu  200 0 200 800 0 0 0 0 0 0\n")
    first = monitor.update()
    second = monitor.update()
    assert first.cpu_usage_percent == pytest.approx(100.0)
    assert second.cpu_usage_percent == first.cpu_usage_percent


def test_missing_procfs_yields_defaults(tmp_path):
    snap = HostMonitor(str(tmp_path / "nope")).update()
    assert snap == HostSnapshot()
