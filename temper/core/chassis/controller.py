############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# controller.py: Chassis telemetry polling and fan actuation
#
############################################################

"""Chassis telemetry and fan control through external IPMI tooling.

The BMC tolerates a single in-flight session, so sensor polls and fan
commands share one ``OperationGuard``. A request that finds the guard taken
is dropped; the control loop retries on its own schedule. Both polls and
fan commands run on a short-lived worker thread, never on the caller's.
"""

import dataclasses
import threading
import time
from typing import Callable, List, Optional, Sequence

from temper.core.chassis.backends import (
    DETECT_TIMEOUT,
    FREEIPMI_VERSION_CHECK,
    RAW_TIMEOUT,
    SENSOR_TIMEOUT,
    ChassisBackend,
    FreeIPMIBackend,
    IpmitoolBackend,
    RemoteShellBackend,
)
from temper.core.chassis.models import ChassisTelemetrySnapshot
from temper.core.process import ProcessResult, run_command
from temper.logging_config import get_logger

logger = get_logger(__name__)

CommandRunner = Callable[[Sequence[str], float], ProcessResult]

# Dell-style OEM raw commands
MANUAL_FAN_CONTROL = ["0x30", "0x30", "0x01", "0x00"]
AUTOMATIC_FAN_CONTROL = ["0x30", "0x30", "0x01", "0x01"]
SET_FAN_SPEED_PREFIX = ["0x30", "0x30", "0x02", "0xff"]


class OperationGuard:
    """Non-blocking single-holder guard: acquire fails instead of waiting."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


class ChassisTelemetryController:
    """Background BMC sensor poll plus chassis fan actuation."""

    def __init__(self, runner: CommandRunner = run_command):
        self._runner = runner
        self._backend: Optional[ChassisBackend] = None
        self._guard = OperationGuard()
        self._snapshot_lock = threading.Lock()
        self._snapshot = ChassisTelemetrySnapshot()
        self._worker_thread: Optional[threading.Thread] = None

    def configure(
        self,
        host: str,
        user: str = "",
        password: str = "",
        backend: str = "auto",
        ssh_target: Optional[str] = None,
    ) -> None:
        """Select a backend once; an empty host leaves the controller disabled."""
        if not host:
            self._backend = None
            return

        if backend == "ssh":
            target = ssh_target or (f"{user}@{host}" if user else host)
            self._backend = RemoteShellBackend(host, user, password, target)
        elif backend == "freeipmi":
            self._backend = FreeIPMIBackend(host, user, password)
        elif backend == "ipmitool":
            self._backend = IpmitoolBackend(host, user, password)
        elif self._detect_freeipmi():
            self._backend = FreeIPMIBackend(host, user, password)
        else:
            self._backend = IpmitoolBackend(host, user, password)

        logger.info("chassis_controller_configured", host=host, backend=self._backend.name)

    def _detect_freeipmi(self) -> bool:
        result = self._runner(FREEIPMI_VERSION_CHECK, DETECT_TIMEOUT)
        if result.ok:
            logger.debug("freeipmi_detected", version=result.stdout.strip()[:50])
            return True
        return False

    @property
    def is_enabled(self) -> bool:
        return self._backend is not None

    @property
    def is_polling(self) -> bool:
        return self._guard.busy

    @property
    def backend_name(self) -> Optional[str]:
        return self._backend.name if self._backend else None

    def get_snapshot(self) -> ChassisTelemetrySnapshot:
        with self._snapshot_lock:
            return self._snapshot

    def start_async_poll(self) -> bool:
        """Launch a background sensor poll unless one is already in flight.

        Returns True when a poll thread was started.
        """
        if self._backend is None or not self._guard.try_acquire():
            return False

        return self._spawn_worker(self._poll_worker, "chassis-poll")

    def _spawn_worker(self, target, name: str, *args) -> bool:
        # Caller holds the guard; the worker releases it when done
        try:
            self._worker_thread = threading.Thread(
                target=target,
                args=args,
                name=name,
                daemon=True,
            )
            self._worker_thread.start()
        except RuntimeError:
            self._guard.release()
            raise
        return True

    def wait_for_poll_complete(self, timeout: Optional[float] = None) -> None:
        """Join the in-flight BMC operation (sensor poll or fan command), if any."""
        thread = self._worker_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout)

    def _poll_worker(self) -> None:
        try:
            self._poll_once()
        except Exception as e:
            logger.error("chassis_poll_error", error=str(e), exc_info=True)
        finally:
            self._guard.release()

    def _poll_once(self) -> None:
        backend = self._backend
        if backend is None:
            return

        start = time.monotonic()
        result = self._runner(backend.sensor_command(), SENSOR_TIMEOUT)
        duration_ms = int((time.monotonic() - start) * 1000)
        if not result.ok:
            logger.warning(
                "chassis_poll_failed",
                duration_ms=duration_ms,
                exit_code=result.exit_code,
                stderr=result.stderr.strip()[:200],
            )
            return

        snapshot = backend.parse_sensors(result.stdout)
        if not snapshot.available:
            # Garbled or partial output; keep the last good reading
            logger.warning("chassis_poll_unusable", duration_ms=duration_ms)
            return

        with self._snapshot_lock:
            # Fan target belongs to the control loop, not to the sensor read
            snapshot = dataclasses.replace(snapshot, target_fan_speed=self._snapshot.target_fan_speed)
            self._snapshot = snapshot

        logger.info(
            "chassis_poll_complete",
            duration_ms=duration_ms,
            inlet=snapshot.inlet_temp,
            exhaust=snapshot.exhaust_temp,
            power=snapshot.power_consumption,
            fans=len(snapshot.fan_speeds),
            cpus=len(snapshot.cpu_temps),
        )

    def set_chassis_fan_speed(self, percent: int) -> bool:
        """Take manual control and set all chassis fans to ``percent``.

        The raw commands run on a background thread so the caller never waits
        on the BMC. The target is recorded even when the command is dropped
        because another BMC operation is in flight. Returns True if the
        commands were dispatched.
        """
        if self._backend is None:
            return False

        percent = max(0, min(100, int(percent)))
        with self._snapshot_lock:
            self._snapshot = dataclasses.replace(self._snapshot, target_fan_speed=percent)

        if not self._guard.try_acquire():
            return False
        return self._spawn_worker(self._actuation_worker, "chassis-fan", percent)

    def _actuation_worker(self, percent: int) -> None:
        try:
            self._execute_raw(MANUAL_FAN_CONTROL)
            self._execute_raw(SET_FAN_SPEED_PREFIX + [f"0x{percent:02x}"])
            logger.debug("chassis_fan_speed_set", percent=percent)
        except Exception as e:
            logger.error("chassis_fan_command_error", percent=percent, error=str(e), exc_info=True)
        finally:
            self._guard.release()

    def restore_automatic_fan_control(self) -> bool:
        """Hand fan control back to the BMC, waiting for any in-flight operation."""
        if self._backend is None:
            return False
        self.wait_for_poll_complete()
        if not self._guard.try_acquire():
            return False
        try:
            self._execute_raw(AUTOMATIC_FAN_CONTROL)
        finally:
            self._guard.release()
        logger.info("chassis_automatic_fan_control_restored")
        return True

    def _execute_raw(self, raw_bytes: List[str]) -> ProcessResult:
        result = self._runner(self._backend.raw_command(raw_bytes), RAW_TIMEOUT)
        if not result.ok:
            logger.debug(
                "chassis_raw_command_failed",
                command=" ".join(raw_bytes),
                exit_code=result.exit_code,
                stderr=result.stderr.strip(),
            )
        return result
