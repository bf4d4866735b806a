############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# nvml.py: Thin wrapper over the NVIDIA Management Library
#
############################################################

"""Thin wrapper over NVIDIA Management Library (pynvml).

Calls the control loop depends on (temperature, throttle reasons, fan and
power control) raise ``pynvml.NVMLError``. Readings that are not supported on
every board, including fan speed on passively cooled parts, fall back to
"Unknown" or 0 instead.
"""

from typing import Any, List

import pynvml

from temper.core.gpu.models import (
    EccCounts,
    GpuClocks,
    GpuProcess,
    GpuTelemetrySnapshot,
    PcieInfo,
)
from temper.logging_config import get_logger

logger = get_logger(__name__)

NVMLError = pynvml.NVMLError


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class NVMLManager:
    """Owns the NVML session for the lifetime of the daemon."""

    def __init__(self):
        pynvml.nvmlInit()
        self._initialized = True

    def shutdown(self) -> None:
        if self._initialized:
            try:
                pynvml.nvmlShutdown()
            except NVMLError as e:
                logger.warning("nvml_shutdown_failed", error=str(e))
            self._initialized = False

    # ---- Devices ----

    def device_count(self) -> int:
        return pynvml.nvmlDeviceGetCount()

    def get_handle(self, index: int):
        return pynvml.nvmlDeviceGetHandleByIndex(index)

    def get_handles(self) -> List[Any]:
        return [self.get_handle(i) for i in range(self.device_count())]

    # ---- Control readings ----

    def get_temperature(self, handle) -> int:
        return pynvml.nvmlDeviceGetTemperature(handle, pynvml.NVML_TEMPERATURE_GPU)

    def get_throttle_reasons(self, handle) -> int:
        return pynvml.nvmlDeviceGetCurrentClocksThrottleReasons(handle)

    # ---- Descriptive readings ----

    def get_fan_speed(self, handle) -> int:
        # First fan is a proxy for the whole board; passive boards report none
        try:
            return pynvml.nvmlDeviceGetFanSpeed_v2(handle, 0)
        except NVMLError:
            return 0

    def get_power_usage(self, handle) -> int:
        try:
            return pynvml.nvmlDeviceGetPowerUsage(handle)  # milliwatts
        except NVMLError:
            return 0

    def get_power_limit(self, handle) -> int:
        try:
            return pynvml.nvmlDeviceGetEnforcedPowerLimit(handle)  # milliwatts
        except NVMLError:
            return 0

    def get_utilization(self, handle) -> tuple[int, int]:
        try:
            util = pynvml.nvmlDeviceGetUtilizationRates(handle)
        except NVMLError:
            return 0, 0
        return util.gpu, util.memory

    def get_memory_info(self, handle) -> tuple[int, int]:
        try:
            mem = pynvml.nvmlDeviceGetMemoryInfo(handle)
        except NVMLError:
            return 0, 0
        return mem.total, mem.used

    def get_name(self, handle) -> str:
        try:
            return _text(pynvml.nvmlDeviceGetName(handle))
        except NVMLError:
            return "Unknown"

    def get_serial(self, handle) -> str:
        try:
            return _text(pynvml.nvmlDeviceGetSerial(handle))
        except NVMLError:
            return "Unknown"

    def get_vbios_version(self, handle) -> str:
        try:
            return _text(pynvml.nvmlDeviceGetVbiosVersion(handle))
        except NVMLError:
            return "Unknown"

    def get_power_state(self, handle) -> int:
        try:
            return int(pynvml.nvmlDeviceGetPerformanceState(handle))
        except NVMLError:
            return 999

    def get_clocks(self, handle) -> GpuClocks:
        def clock(getter, clock_type) -> int:
            try:
                return getter(handle, clock_type)
            except NVMLError:
                return 0

        current = pynvml.nvmlDeviceGetClockInfo
        maximum = pynvml.nvmlDeviceGetMaxClockInfo
        return GpuClocks(
            graphics=clock(current, pynvml.NVML_CLOCK_GRAPHICS),
            memory=clock(current, pynvml.NVML_CLOCK_MEM),
            sm=clock(current, pynvml.NVML_CLOCK_SM),
            video=clock(current, pynvml.NVML_CLOCK_VIDEO),
            max_graphics=clock(maximum, pynvml.NVML_CLOCK_GRAPHICS),
            max_memory=clock(maximum, pynvml.NVML_CLOCK_MEM),
            max_sm=clock(maximum, pynvml.NVML_CLOCK_SM),
            max_video=clock(maximum, pynvml.NVML_CLOCK_VIDEO),
        )

    def get_pcie_info(self, handle) -> PcieInfo:
        def read(fn, *args) -> int:
            try:
                return fn(handle, *args)
            except NVMLError:
                return 0

        return PcieInfo(
            tx_throughput=read(pynvml.nvmlDeviceGetPcieThroughput, pynvml.NVML_PCIE_UTIL_TX_BYTES),
            rx_throughput=read(pynvml.nvmlDeviceGetPcieThroughput, pynvml.NVML_PCIE_UTIL_RX_BYTES),
            gen=read(pynvml.nvmlDeviceGetCurrPcieLinkGeneration),
            width=read(pynvml.nvmlDeviceGetCurrPcieLinkWidth),
        )

    def get_ecc_counts(self, handle) -> EccCounts:
        def count(error_type, counter_type) -> int:
            try:
                return pynvml.nvmlDeviceGetTotalEccErrors(handle, error_type, counter_type)
            except NVMLError:
                return 0  # ECC disabled or unsupported

        corrected = pynvml.NVML_MEMORY_ERROR_TYPE_CORRECTED
        uncorrected = pynvml.NVML_MEMORY_ERROR_TYPE_UNCORRECTED
        return EccCounts(
            volatile_single=count(corrected, pynvml.NVML_VOLATILE_ECC),
            volatile_double=count(uncorrected, pynvml.NVML_VOLATILE_ECC),
            aggregate_single=count(corrected, pynvml.NVML_AGGREGATE_ECC),
            aggregate_double=count(uncorrected, pynvml.NVML_AGGREGATE_ECC),
        )

    def get_processes(self, handle) -> List[GpuProcess]:
        processes = []
        for getter in (
            pynvml.nvmlDeviceGetComputeRunningProcesses,
            pynvml.nvmlDeviceGetGraphicsRunningProcesses,
        ):
            try:
                infos = getter(handle)
            except NVMLError:
                continue
            for info in infos:
                try:
                    name = _text(pynvml.nvmlSystemGetProcessName(info.pid))
                except NVMLError:
                    name = "Unknown"
                processes.append(
                    GpuProcess(pid=info.pid, used_memory=info.usedGpuMemory or 0, name=name)
                )
        return processes

    # ---- Control ----

    def _num_fans(self, handle) -> int:
        return pynvml.nvmlDeviceGetNumFans(handle)

    def set_fan_speed(self, handle, percent: int) -> None:
        for fan in range(self._num_fans(handle)):
            pynvml.nvmlDeviceSetFanSpeed_v2(handle, fan, percent)

    def set_power_limit(self, handle, watts: int) -> None:
        pynvml.nvmlDeviceSetPowerManagementLimit(handle, watts * 1000)

    def restore_auto_fans(self, handle) -> None:
        try:
            num_fans = self._num_fans(handle)
        except NVMLError:
            return
        for fan in range(num_fans):
            try:
                pynvml.nvmlDeviceSetFanControlPolicy(
                    handle, fan, pynvml.NVML_FAN_POLICY_TEMPERATURE_CONTINOUS_SW
                )
            except NVMLError as e:
                logger.warning("nvml_restore_fan_policy_failed", fan=fan, error=str(e))

    # ---- Aggregate ----

    def collect_telemetry(self, index: int, handle) -> GpuTelemetrySnapshot:
        """Gather descriptive telemetry for one device.

        Control-loop owned fields (target fan, power limit) are filled in by
        the caller.
        """
        util_gpu, util_mem = self.get_utilization(handle)
        mem_total, mem_used = self.get_memory_info(handle)
        return GpuTelemetrySnapshot(
            index=index,
            name=self.get_name(handle),
            serial=self.get_serial(handle),
            vbios=self.get_vbios_version(handle),
            p_state=self.get_power_state(handle),
            fan_speed=self.get_fan_speed(handle),
            power_usage=self.get_power_usage(handle),
            utilization_gpu=util_gpu,
            utilization_memory=util_mem,
            memory_total=mem_total,
            memory_used=mem_used,
            clocks=self.get_clocks(handle),
            pcie=self.get_pcie_info(handle),
            ecc=self.get_ecc_counts(handle),
            processes=tuple(self.get_processes(handle)),
        )
