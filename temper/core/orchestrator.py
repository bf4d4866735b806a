############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# orchestrator.py: Fixed-period control loop driving GPU and
#                  chassis actuators
#
############################################################

"""Control loop orchestration.

Each tick reads every GPU, applies the fan and power curves, schedules the
chassis sensor poll and fan update, then publishes the unified document.
The loop only ever blocks on NVML calls; chassis and inference I/O run on
their own threads.
"""

import dataclasses
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set

from temper.core.curve import CurveController
from temper.core.document import build_document
from temper.core.gpu.models import GpuTelemetrySnapshot, is_thermally_throttled
from temper.core.gpu.nvml import NVMLError
from temper.logging_config import get_logger

logger = get_logger(__name__)

# A GPU at or above this fan duty has run out of cooling headroom
GPU_DISTRESS_FAN_PERCENT = 95


class ControlLoopOrchestrator:
    """Runs the thermal/power control loop and owns shutdown ordering."""

    def __init__(
        self,
        nvml,
        fan_curve: CurveController,
        power_curve: CurveController,
        chassis_curve: CurveController,
        chassis,
        inference,
        host,
        server,
        loop_interval: float = 0.1,
        chassis_poll_interval: float = 30.0,
        chassis_fan_every_n_ticks: int = 10,
        safety_power_watts: int = 100,
        clock: Callable[[], float] = time.monotonic,
        handles: Optional[List[Any]] = None,
    ):
        self.nvml = nvml
        self.fan_curve = fan_curve
        self.power_curve = power_curve
        self.chassis_curve = chassis_curve
        self.chassis = chassis
        self.inference = inference
        self.host = host
        self.server = server

        self.loop_interval = loop_interval
        self.chassis_poll_interval = chassis_poll_interval
        self.chassis_fan_every_n_ticks = max(1, chassis_fan_every_n_ticks)
        self.safety_power_watts = safety_power_watts
        self._clock = clock

        self._handles: List[Any] = list(handles) if handles is not None else nvml.get_handles()
        self._tick_count = 0
        self._last_chassis_poll: Optional[float] = None
        self._last_chassis_source: Optional[str] = None
        self._override_active: Dict[int, bool] = {}
        self._fan_faults: Set[int] = set()
        self._actuation_enabled = True
        self._shutdown_done = False

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def device_count(self) -> int:
        return len(self._handles)

    # ---- Per-device control ----

    def _control_device(self, index: int, handle) -> GpuTelemetrySnapshot:
        temperature = self.nvml.get_temperature(handle)

        target_fan = 0
        if not self.fan_curve.is_empty():
            target_fan = self.fan_curve.evaluate(temperature)
            try:
                self.nvml.set_fan_speed(handle, target_fan)
            except NVMLError as e:
                # Warn once per fault; passive boards fail on every tick
                log = logger.debug if index in self._fan_faults else logger.warning
                log("gpu_fan_set_failed", gpu=index, target=target_fan, error=str(e))
                self._fan_faults.add(index)
            else:
                self._fan_faults.discard(index)

        # Reached even when fan actuation failed
        reasons = self.nvml.get_throttle_reasons(handle)
        override = False
        if not self.power_curve.is_empty():
            target_power = self.power_curve.evaluate(temperature)
            if is_thermally_throttled(reasons):
                target_power = self.safety_power_watts
                override = True
            try:
                self.nvml.set_power_limit(handle, target_power)
                power_limit = target_power * 1000
            except NVMLError as e:
                logger.warning(
                    "gpu_power_limit_set_failed", gpu=index, target=target_power, error=str(e)
                )
                power_limit = self.nvml.get_power_limit(handle)
        else:
            power_limit = self.nvml.get_power_limit(handle)

        if override != self._override_active.get(index, False):
            if override:
                logger.warning(
                    "reactive_override_engaged",
                    gpu=index,
                    temperature=temperature,
                    throttle_reasons=hex(reasons),
                    power_watts=self.safety_power_watts,
                )
            else:
                logger.info("reactive_override_released", gpu=index, temperature=temperature)
            self._override_active[index] = override

        try:
            telemetry = self.nvml.collect_telemetry(index, handle)
        except NVMLError as e:
            logger.warning("gpu_telemetry_failed", gpu=index, error=str(e))
            telemetry = GpuTelemetrySnapshot(index=index)
        return dataclasses.replace(
            telemetry,
            temperature=temperature,
            target_fan=target_fan,
            power_limit=power_limit,
            throttle_reasons=reasons,
            reactive_override=override,
        )

    # ---- Chassis ----

    def _maybe_poll_chassis(self) -> None:
        if not self.chassis.is_enabled:
            return
        now = self._clock()
        due = (
            self._last_chassis_poll is None
            or now - self._last_chassis_poll >= self.chassis_poll_interval
        )
        if due and self.chassis.start_async_poll():
            self._last_chassis_poll = now

    def _update_chassis_fan(self, gpus: List[GpuTelemetrySnapshot]) -> None:
        if not self.chassis.is_enabled:
            return
        curve = self.chassis_curve if not self.chassis_curve.is_empty() else self.fan_curve
        if curve.is_empty():
            return

        snapshot = self.chassis.get_snapshot()
        cpu_temp = snapshot.max_cpu_temp if snapshot.available and snapshot.cpu_temps else None

        distressed = any(
            gpu.fan_speed >= GPU_DISTRESS_FAN_PERCENT or gpu.thermally_throttled for gpu in gpus
        )
        gpu_temp = max((gpu.temperature for gpu in gpus), default=None) if distressed else None

        if cpu_temp is None and gpu_temp is None:
            return

        if gpu_temp is not None and (cpu_temp is None or gpu_temp > cpu_temp):
            source, temperature = "gpu", gpu_temp
        else:
            source, temperature = "cpu", cpu_temp

        target = curve.evaluate(temperature)
        self.chassis.set_chassis_fan_speed(target)

        log = logger.info if source != self._last_chassis_source else logger.debug
        log(
            "chassis_fan_decision",
            source=source,
            temperature=temperature,
            cpu_temp=cpu_temp,
            gpu_distress=distressed,
            target=target,
        )
        self._last_chassis_source = source

    # ---- Loop ----

    def tick(self) -> Dict[str, Any]:
        """Run one control period and return the published document."""
        gpus: List[GpuTelemetrySnapshot] = []
        if self._actuation_enabled:
            for index, handle in enumerate(self._handles):
                try:
                    gpus.append(self._control_device(index, handle))
                except NVMLError as e:
                    logger.warning("gpu_control_failed", gpu=index, error=str(e))

            self._maybe_poll_chassis()
            if self._tick_count % self.chassis_fan_every_n_ticks == 0:
                self._update_chassis_fan(gpus)

        host = self.host.update()
        document = build_document(
            gpus,
            host,
            self.chassis.get_snapshot(),
            self.inference.get_snapshot(),
        )
        self.server.publish(document)
        self._tick_count += 1
        return document

    def run(self, stop_event: threading.Event) -> None:
        logger.info(
            "control_loop_started",
            gpus=len(self._handles),
            fan_curve=repr(self.fan_curve),
            power_curve=repr(self.power_curve),
            chassis_curve=repr(self.chassis_curve),
        )
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                logger.error("control_tick_failed", error=str(e), exc_info=True)
            elapsed = time.monotonic() - started
            stop_event.wait(max(0.0, self.loop_interval - elapsed))
        logger.info("control_loop_stopped", ticks=self._tick_count)

    # ---- Shutdown ----

    def stop_actuation(self) -> None:
        self._actuation_enabled = False

    def shutdown(self) -> None:
        """Return every actuator to automatic control and stop background work."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("shutdown_started")

        self.stop_actuation()

        for index, handle in enumerate(self._handles):
            try:
                self.nvml.restore_auto_fans(handle)
            except NVMLError as e:
                logger.warning("gpu_fan_restore_failed", gpu=index, error=str(e))

        self.chassis.restore_automatic_fan_control()
        self.inference.stop()
        self.chassis.wait_for_poll_complete()
        self.server.stop()

        logger.info("shutdown_complete")
