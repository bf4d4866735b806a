############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# host.py: Host CPU, memory, load and uptime from procfs
#
############################################################

"""Host statistics read directly from procfs."""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple


@dataclass(frozen=True)
class HostSnapshot:
    """Host-level statistics."""

    cpu_usage_percent: float = 0.0
    mem_total: int = 0  # bytes
    mem_available: int = 0  # bytes
    load_avg_1m: float = 0.0
    load_avg_5m: float = 0.0
    load_avg_15m: float = 0.0
    uptime: int = 0  # seconds


class HostMonitor:
    """Single-pass procfs reader; CPU usage is the delta between updates."""

    def __init__(self, proc_root: str = "/proc"):
        self._proc = Path(proc_root)
        self._lock = threading.Lock()
        self._snapshot = HostSnapshot()
        self._prev_idle = 0
        self._prev_total = 0
        # Prime the CPU counters so the first update yields a real delta
        self._read_cpu_usage()

    def get_snapshot(self) -> HostSnapshot:
        with self._lock:
            return self._snapshot

    def update(self) -> HostSnapshot:
        cpu = self._read_cpu_usage()
        mem_total, mem_available = self._read_meminfo()
        load = self._read_loadavg()
        uptime = self._read_uptime()

        snapshot = HostSnapshot(
            cpu_usage_percent=cpu if cpu is not None else self._snapshot.cpu_usage_percent,
            mem_total=mem_total,
            mem_available=mem_available,
            load_avg_1m=load[0],
            load_avg_5m=load[1],
            load_avg_15m=load[2],
            uptime=uptime,
        )
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def _read(self, name: str) -> str:
        try:
            return (self._proc / name).read_text()
        except OSError:
            return ""

    def _read_cpu_usage(self):
        line = self._read("stat").split("\n", 1)[0]
        fields = line.split()
        if not fields or fields[0] != "cpu":
            return None
        try:
            values = [int(v) for v in fields[1:9]]
        except ValueError:
            return None
        values += [0] * (8 - len(values))
        user, nice, system, idle, iowait, irq, softirq, steal = values

        total = user + nice + system + idle + iowait + irq + softirq + steal
        total_idle = idle + iowait
        usage = None
        if self._prev_total > 0:
            total_diff = total - self._prev_total
            idle_diff = total_idle - self._prev_idle
            if total_diff > 0:
                usage = (total_diff - idle_diff) / total_diff * 100.0
        self._prev_total = total
        self._prev_idle = total_idle
        return usage

    def _read_meminfo(self) -> Tuple[int, int]:
        total = available = 0
        for line in self._read("meminfo").splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            try:
                value = int(parts[1]) * 1024  # kB -> bytes
            except ValueError:
                continue
            if parts[0] == "MemTotal:":
                total = value
            elif parts[0] == "MemAvailable:":
                available = value
            if total and available:
                break
        return total, available

    def _read_loadavg(self) -> Tuple[float, float, float]:
        parts = self._read("loadavg").split()
        try:
            return float(parts[0]), float(parts[1]), float(parts[2])
        except (IndexError, ValueError):
            return 0.0, 0.0, 0.0

    def _read_uptime(self) -> int:
        parts = self._read("uptime").split()
        try:
            return int(float(parts[0]))
        except (IndexError, ValueError):
            return 0
